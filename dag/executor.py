"""
Node Executor - runs a single workflow node.
节点执行器 —— 执行工作流中的单个节点。

For each node the executor:
  1. Resolves inputs from upstream outputs (dag.resolver)
  2. Dispatches on the node kind through a table that covers every NodeKind
  3. Drives the node's status through NodeStateMachine
  4. Writes content back and publishes values on the output ports

对每个节点，执行器：
  1. 从上游输出中解析输入（dag.resolver）
  2. 通过覆盖全部 NodeKind 的分派表按节点类型分派
  3. 经由 NodeStateMachine 推进节点状态
  4. 写回节点内容，并把结果发布到各输出端口

Muted nodes never call the task client: they complete immediately and copy
the value of their first input to every output.
静音节点不会调用任务客户端：直接完成，并把第一个输入端口的值复制到所有输出端口。

Any error while resolving or executing marks the node ERROR and is raised
as NodeExecutionError so the runner can stop the run.
解析或执行过程中的任何异常都会把节点标记为 ERROR，
并以 NodeExecutionError 抛出，由 Runner 终止本次运行。
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping

from dag.graph import WorkflowGraph
from dag.nodes import INPUT, INPUT_IMAGE, INPUT_TEXT
from dag.resolver import OutputStore, resolve_inputs
from dag.state_machine import NodeStateMachine
from schema import (
    SOURCE_KINDS,
    DataKind,
    HistoryEntry,
    ImagePart,
    Node,
    NodeKind,
    NodeStatus,
    RunEventType,
)
from tasks.errors import PermanentTaskError

if TYPE_CHECKING:
    from tasks.client import TaskClient

logger = logging.getLogger(__name__)


class NodeValidationError(Exception):
    """
    A node's inputs are missing or malformed for its kind.
    节点输入缺失或格式不符合该节点类型的要求。
    """
    pass


class NodeExecutionError(Exception):
    """
    Raised by NodeExecutor after it has marked a node ERROR.
    NodeExecutor 把节点标记为 ERROR 之后抛出，携带节点 ID 与错误信息。
    """

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        self.message = message
        super().__init__(message)


# Every node kind maps to the name of its handler method.
# 每种节点类型映射到对应的处理方法名；导入时检查覆盖完整。
_HANDLERS: dict[NodeKind, str] = {
    NodeKind.INPUT_TEXT: "_run_source",
    NodeKind.INPUT_IMAGE: "_run_source",
    NodeKind.TEXT_GENERATOR: "_run_text_generator",
    NodeKind.IMAGE_EDITOR: "_run_image_editor",
    NodeKind.VIDEO_GENERATOR: "_run_video_generator",
    NodeKind.PRESET: "_run_preset",
    NodeKind.OUTPUT_DISPLAY: "_run_output_display",
}

_missing_kinds = set(NodeKind) - set(_HANDLERS)
if _missing_kinds:
    raise RuntimeError(f"NodeExecutor has no handler for: {sorted(k.value for k in _missing_kinds)}")

# Kinds whose output is an {"image", "text"} pair split across ports
# 输出为 {"image", "text"} 对、需要按端口类型拆分的节点
_SPLIT_OUTPUT_KINDS = frozenset({NodeKind.IMAGE_EDITOR, NodeKind.PRESET})


# ----------------------------------------------------------------------
# Image normalization
# 图像标准化
# ----------------------------------------------------------------------

def to_image_part(value: Any) -> ImagePart | None:
    """
    Normalize an image reference to ImagePart, or None if it is not an image.
    把各种图像引用标准化为 ImagePart；不是图像时返回 None。

    Accepts: data URLs, ImagePart, {"data", "mimeType"|"mime_type"} mappings,
    {"image": ...} result pairs, and paths to image files.
    支持：data URL、ImagePart、{"data", "mimeType"|"mime_type"} 字典、
    {"image": ...} 结果对、图像文件路径。
    """
    if value is None:
        return None
    if isinstance(value, ImagePart):
        return value
    if isinstance(value, Mapping):
        if value.get("data"):
            mime = value.get("mimeType") or value.get("mime_type") or "image/png"
            return ImagePart(data=value["data"], mime_type=mime)
        return to_image_part(value.get("image"))
    if isinstance(value, str) and value.startswith("data:image"):
        meta, _, data = value.partition(",")
        mime = meta[len("data:"):].split(";")[0]
        return ImagePart(data=data, mime_type=mime) if data else None
    if isinstance(value, (str, Path)):
        path = Path(value)
        if not path.is_file():
            return None
        mime, _ = mimetypes.guess_type(path.name)
        if not mime or not mime.startswith("image/"):
            return None
        return ImagePart(data=base64.b64encode(path.read_bytes()).decode("ascii"), mime_type=mime)
    return None


def _require_text(value: Any, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise NodeValidationError(message)
    return value


class NodeExecutor:
    """
    Dispatches nodes to the task client and records their results.
    把节点分派给任务客户端，并记录执行结果。
    """

    def __init__(
        self,
        task_client: TaskClient,
        on_event: Callable[[RunEventType, dict[str, Any]], None] | None = None,
    ):
        self._client = task_client
        self._emit = on_event or (lambda *_: None)  # 事件回调（用于 UI 实时更新）
        self._sm = NodeStateMachine(on_transition=self._on_node_transition)
        self._current: dict[str, Node] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # 生命周期
    # ------------------------------------------------------------------

    def begin_run(self) -> None:
        """Forget nodes tracked by the previous run / 清空上一轮运行跟踪的节点."""
        self._current.clear()

    def reset(self, node: Node) -> None:
        """
        Prepare a node for a new run: IDLE, no error, content cleared
        except for source nodes holding user input.
        为新一轮运行准备节点：状态置 IDLE、清除错误信息，
        除保存用户输入的源节点外清空 content。
        """
        self._current[node.id] = node
        node.error_message = None
        if node.kind not in SOURCE_KINDS:
            node.content = None
        self._sm.reset(node)

    async def execute(
        self,
        node: Node,
        graph: WorkflowGraph,
        outputs: OutputStore,
        history: list[HistoryEntry],
    ) -> None:
        """
        Execute one node and publish its outputs.
        执行单个节点并发布其输出。

        Raises NodeExecutionError after marking the node ERROR.
        失败时先把节点标记为 ERROR，再抛出 NodeExecutionError。
        """
        self._current[node.id] = node
        if node.muted:
            self._passthrough(node, graph, outputs)
            return

        # Source nodes keep the user's input as their content
        # 源节点的 content 即用户输入，不能被进度信息覆盖
        if node.kind not in SOURCE_KINDS:
            node.content = {"progress": "Starting..."}
        self._sm.transition(node, NodeStatus.PROCESSING)
        try:
            inputs = resolve_inputs(node, graph, outputs)
            handler = getattr(self, _HANDLERS[node.kind])
            output = await handler(node, inputs, history)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("[Executor] Node %s (%s) failed: %s", node.id, node.kind.value, message)
            node.error_message = message
            self._sm.transition(node, NodeStatus.ERROR)
            raise NodeExecutionError(node.id, message) from exc

        node.content = output
        self._sm.transition(node, NodeStatus.COMPLETED)
        self._publish(node, output, outputs)
        logger.info("[Executor] Node %s (%s) completed", node.id, node.kind.value)

    def _passthrough(self, node: Node, graph: WorkflowGraph, outputs: OutputStore) -> None:
        """
        Muted node: complete without a task call, first input -> every output.
        静音节点：不调用任务，第一个输入的值复制到所有输出端口。
        """
        self._sm.transition(node, NodeStatus.COMPLETED)
        if not node.inputs:
            return
        value = resolve_inputs(node, graph, outputs)[node.inputs[0].id]
        for port in node.outputs:
            outputs.publish(node.id, port.id, value)
        logger.info("[Executor] Node %s muted, passed input through to %d output(s)", node.id, len(node.outputs))

    def _publish(self, node: Node, output: Any, outputs: OutputStore) -> None:
        split = node.kind in _SPLIT_OUTPUT_KINDS and isinstance(output, dict) and "image" in output
        for port in node.outputs:
            if split:
                value = output["image"] if port.data_kind == DataKind.IMAGE else output.get("text")
            else:
                value = output
            outputs.publish(node.id, port.id, value)

    # ------------------------------------------------------------------
    # Handlers, one per NodeKind
    # 各节点类型的处理函数
    # ------------------------------------------------------------------

    async def _run_source(self, node: Node, inputs: dict[str, Any], history: list[HistoryEntry]) -> Any:
        return node.content

    async def _run_text_generator(self, node: Node, inputs: dict[str, Any], history: list[HistoryEntry]) -> str:
        prompt = _require_text(inputs.get(INPUT), "A text prompt is required for text generation.")
        return await self._client.text_generate(prompt)

    async def _run_image_editor(self, node: Node, inputs: dict[str, Any], history: list[HistoryEntry]) -> dict:
        """
        Edit mode when an image is connected, generation mode otherwise.
        连接了图像时为编辑模式，否则为生成模式。
        """
        prompt = _require_text(
            inputs.get(INPUT_TEXT), "A text prompt is required for image generation/editing."
        )
        image = to_image_part(inputs.get(INPUT_IMAGE))

        if image is not None:
            result = await self._client.image_edit(image, prompt)
            if not result.image:
                raise PermanentTaskError(result.text or "Image editing failed to produce an image.")
            output = {"image": result.image, "text": result.text}
        else:
            output = {"image": await self._client.image_generate(prompt), "text": None}

        self._record_history(node, history, output["image"], prompt)
        return output

    async def _run_preset(self, node: Node, inputs: dict[str, Any], history: list[HistoryEntry]) -> dict:
        """
        Collect every image input (multi ports contribute their whole list,
        in edge order), then run the preset prompt over them.
        收集所有图像输入（多输入端口按边注册顺序贡献整个列表），再以预设提示词执行。
        """
        raw: list[Any] = []
        for port in node.inputs:
            if port.data_kind not in (DataKind.IMAGE, DataKind.ANY):
                continue
            value = inputs.get(port.id)
            if port.multi:
                raw.extend(value or [])
            else:
                raw.append(value)

        images = [part for part in (to_image_part(v) for v in raw) if part is not None]
        if not images or not node.prompt:
            raise NodeValidationError(f"Missing required inputs for preset: {node.label}")

        result = await self._client.preset_execute(images, node.prompt)
        if not result.image:
            raise PermanentTaskError(result.text or "Preset failed to produce an image.")

        output = {"image": result.image, "text": result.text}
        self._record_history(node, history, result.image, node.prompt)
        return output

    async def _run_video_generator(self, node: Node, inputs: dict[str, Any], history: list[HistoryEntry]) -> str:
        prompt = _require_text(inputs.get(INPUT_TEXT), "A text prompt is required for video generation.")
        image = to_image_part(inputs.get(INPUT_IMAGE))
        return await self._client.video_generate(
            image,
            prompt,
            on_progress=lambda message: self._report_progress(node, message),
        )

    async def _run_output_display(self, node: Node, inputs: dict[str, Any], history: list[HistoryEntry]) -> Any:
        return inputs.get(node.inputs[0].id) if node.inputs else None

    # ------------------------------------------------------------------
    # Side channels: progress, history, status events
    # 旁路输出：进度、历史、状态事件
    # ------------------------------------------------------------------

    def _report_progress(self, node: Node, message: str) -> None:
        # Status stays PROCESSING while progress updates arrive
        # 进度更新期间状态保持 PROCESSING
        node.content = {"progress": message}
        self._emit(RunEventType.NODE_PROGRESS, {"node_id": node.id, "progress": message})

    def _record_history(self, node: Node, history: list[HistoryEntry], data_ref: str, prompt: str) -> None:
        entry = HistoryEntry(kind="image", data_ref=data_ref, prompt=prompt)
        history.append(entry)
        self._emit(RunEventType.HISTORY_APPENDED, {"node_id": node.id, "entry": entry})

    def _on_node_transition(self, node_id: str, old: NodeStatus, new: NodeStatus) -> None:
        node = self._current.get(node_id)
        self._emit(RunEventType.NODE_STATUS, {
            "node_id": node_id,
            "old_status": old.value,
            "status": new.value,
            "content": node.content if node else None,
            "error_message": node.error_message if node else None,
        })
