"""
genflow - command-line entry point.
genflow —— 命令行入口。

Builds a small workflow graph from the command line, runs it with the
dataflow engine and shows live node status with a rich console UI.
根据命令行参数构建一个小型工作流图，用数据流引擎执行，
并通过 Rich 控制台实时展示节点状态。

Examples / 示例:
    python main.py "Write a haiku about rivers"
    python main.py --image "A red fox in the snow"
    python main.py --image "Make it night time" --input photo.png
    python main.py --video "Waves at sunset" [--input still.png]
    python main.py --preset combine-objects --input a.png --input b.png
    python main.py --mute "hello"        # generator muted: prompt passes through
    python main.py --list-presets
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from dag.graph import WorkflowGraph
from dag.nodes import INPUT, INPUT_IMAGE, INPUT_MULTI_IMAGE, INPUT_TEXT, OUTPUT, OUTPUT_IMAGE, create_node
from dag.runner import WorkflowRunner
from presets import PRESET_CONFIGS
from schema import HistoryEntry, NodeKind, RunResult
from tasks.client import TaskClient

console = Console()

# Status -> Rich style mapping
# 节点状态 -> Rich 样式映射
_STATUS_STYLES = {
    "idle": "dim",
    "processing": "bold yellow",
    "completed": "green",
    "error": "red",
}


# ======================================================================
# Graph construction
# 构图
# ======================================================================

def _image_inputs(graph: WorkflowGraph, paths: list[str]) -> list[str]:
    ids = []
    for i, path in enumerate(paths):
        node = graph.add_node(create_node(NodeKind.INPUT_IMAGE, node_id=f"image_{i + 1}", content=path))
        ids.append(node.id)
    return ids


def build_graph(args: argparse.Namespace) -> WorkflowGraph:
    """
    Build the demo graph selected by the command-line flags.
    根据命令行参数构建演示用的工作流图。
    """
    graph = WorkflowGraph()
    prompt = " ".join(args.prompt)
    output = create_node(NodeKind.OUTPUT_DISPLAY, node_id="output")

    if args.preset:
        images = _image_inputs(graph, args.input)
        preset = graph.add_node(create_node(NodeKind.PRESET, node_id="preset", preset_id=args.preset))
        multi = preset.get_input(INPUT_MULTI_IMAGE) is not None
        for i, image_id in enumerate(images):
            port = INPUT_MULTI_IMAGE if multi else preset.inputs[min(i, len(preset.inputs) - 1)].id
            graph.connect(image_id, OUTPUT, preset.id, port)
        graph.add_node(output)
        graph.connect(preset.id, preset.outputs[0].id, output.id, INPUT)
        return graph

    graph.add_node(create_node(NodeKind.INPUT_TEXT, node_id="prompt", content=prompt))

    if args.image or args.video:
        kind = NodeKind.IMAGE_EDITOR if args.image else NodeKind.VIDEO_GENERATOR
        worker = graph.add_node(create_node(kind, node_id="generator", muted=args.mute))
        graph.connect("prompt", OUTPUT, worker.id, INPUT_TEXT)
        for image_id in _image_inputs(graph, args.input[:1]):
            graph.connect(image_id, OUTPUT, worker.id, INPUT_IMAGE)
        out_port = OUTPUT_IMAGE if args.image else OUTPUT
    else:
        worker = graph.add_node(create_node(NodeKind.TEXT_GENERATOR, node_id="generator", muted=args.mute))
        graph.connect("prompt", OUTPUT, worker.id, INPUT)
        out_port = OUTPUT

    graph.add_node(output)
    graph.connect(worker.id, out_port, output.id, INPUT)
    return graph


# ======================================================================
# Event display
# 事件展示
# ======================================================================

def _short(value: Any, limit: int = 80) -> str:
    text = str(value) if value is not None else ""
    if text.startswith("data:"):
        return f"<{text.split(';')[0][5:]} data URL, {len(text)} chars>"
    return text if len(text) <= limit else text[:limit] + "..."


def on_event(event_type: str, data: dict[str, Any]) -> None:
    """
    Live event printer bound to WorkflowRunner.
    绑定到 WorkflowRunner 的实时事件打印器。
    """
    node_id = data.get("node_id")
    if event_type == "run_started":
        console.print(f"[bold blue]Workflow started[/bold blue] ({data['nodes']} nodes)")
    elif event_type == "node_status":
        style = _STATUS_STYLES.get(data["status"], "white")
        console.print(f"  [cyan]{node_id}[/cyan] [{style}]{data['status']}[/{style}]")
    elif event_type == "node_progress":
        console.print(f"  [cyan]{node_id}[/cyan] [dim]{data['progress']}[/dim]")
    elif event_type == "history_appended":
        console.print(f"  [magenta]history[/magenta] + {data['entry'].id}")
    elif event_type == "run_completed":
        console.print("[bold green]Workflow completed successfully![/bold green]")
    elif event_type == "run_failed":
        console.print(f"[bold red]Error at node {node_id}:[/bold red] {data['error']}")


def show_result(graph: WorkflowGraph, result: RunResult, history: list[HistoryEntry]) -> None:
    table = Table(title="Nodes", show_lines=False)
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Content / Error")
    for node in graph.nodes.values():
        style = _STATUS_STYLES.get(node.status.value, "white")
        detail = node.error_message or _short(node.content)
        label = f"{node.kind.value}{' (muted)' if node.muted else ''}"
        table.add_row(node.id, label, f"[{style}]{node.status.value}[/{style}]", detail)
    console.print(table)

    if history:
        console.print(Panel(
            "\n".join(f"{h.id}  {_short(h.data_ref, 40)}  prompt={_short(h.prompt, 40)}" for h in history),
            title="History",
            border_style="magenta",
        ))
    console.print(f"Notification: [bold]{result.notification}[/bold]")


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统，并抑制 httpx/openai/httpcore 的低优先级日志。
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="genflow", description="Run a generative workflow graph.")
    parser.add_argument("prompt", nargs="*", help="Prompt text for the text input node")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--image", action="store_true", help="Generate or edit an image")
    mode.add_argument("--video", action="store_true", help="Generate a video")
    mode.add_argument("--preset", choices=sorted(PRESET_CONFIGS), metavar="PRESET_ID", help="Run a preset")
    mode.add_argument("--list-presets", action="store_true", help="List available presets and exit")
    parser.add_argument("--input", action="append", default=[], metavar="IMAGE", help="Image file (repeatable)")
    parser.add_argument("--mute", action="store_true", help="Mute the generator node")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def list_presets() -> None:
    table = Table(title="Presets")
    table.add_column("ID", style="cyan")
    table.add_column("Label")
    table.add_column("Inputs")
    for preset_id, preset in PRESET_CONFIGS.items():
        table.add_row(preset_id, preset.label, ", ".join(p.label for p in preset.inputs))
    console.print(table)


async def run_workflow(graph: WorkflowGraph) -> RunResult:
    runner = WorkflowRunner(TaskClient(), on_event=on_event)
    result = await runner.run(graph)
    show_result(graph, result, runner.history)
    return result


def main() -> None:
    args = parse_args(sys.argv[1:])
    setup_logging(args.verbose)

    if args.list_presets:
        list_presets()
        return
    if not args.prompt and not args.preset:
        console.print("[red]A prompt is required (or use --preset with --input images).[/red]")
        sys.exit(2)

    graph = build_graph(args)
    result = asyncio.run(run_workflow(graph))
    if result.error:
        sys.exit(1)


if __name__ == "__main__":
    main()
