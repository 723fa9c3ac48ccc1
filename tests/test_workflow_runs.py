"""
整图运行测试 — 使用 AsyncMock 伪造 TaskClient，验证：
  1. 基本数据流：文本 -> 生成器 -> 输出 (Basic dataflow)
  2. 静音直通 (Mute passthrough)
  3. 多输入扇入与预设 (Multi fan-in presets)
  4. 图像编辑器的生成/编辑两种模式 (Image editor modes)
  5. 失败即停 (Fail-fast)
  6. 视频进度事件 (Video progress)
  7. 单飞运行、事件流、环处理 (Single-flight, stream, cycles)

运行方式:
    python -m pytest tests/test_workflow_runs.py -v
"""

from __future__ import annotations

import asyncio
import base64
from unittest.mock import AsyncMock

import pytest

from dag.executor import to_image_part
from dag.graph import WorkflowGraph
from dag.nodes import (
    INPUT,
    INPUT_IMAGE,
    INPUT_MULTI_IMAGE,
    INPUT_TEXT,
    OUTPUT,
    OUTPUT_IMAGE,
    OUTPUT_TEXT,
    create_node,
)
from dag.runner import RunInProgressError, WorkflowRunner
from schema import ImagePart, ImageResult, NodeKind, NodeStatus, RunEventType, RunStatus
from tasks.errors import PermanentTaskError

PNG_A = "data:image/png;base64,QUFB"
PNG_B = "data:image/png;base64,QkJC"
PNG_C = "data:image/png;base64,Q0ND"
RESULT_IMAGE = "data:image/png;base64,UkVT"


# ======================================================================
# Helpers
# ======================================================================


def _fake_client() -> AsyncMock:
    """伪造的 TaskClient：五个操作都是 AsyncMock."""
    client = AsyncMock()
    client.text_generate = AsyncMock(return_value="HELLO")
    client.image_generate = AsyncMock(return_value=RESULT_IMAGE)
    client.image_edit = AsyncMock(return_value=ImageResult(image=RESULT_IMAGE, text="edited"))
    client.preset_execute = AsyncMock(return_value=ImageResult(image=RESULT_IMAGE))
    client.video_generate = AsyncMock(return_value="/tmp/media/vid_1.mp4")
    return client


def _build_text_chain(muted: bool = False) -> WorkflowGraph:
    """text("hello") -> gen -> out"""
    graph = WorkflowGraph()
    graph.add_node(create_node(NodeKind.INPUT_TEXT, node_id="text", content="hello"))
    graph.add_node(create_node(NodeKind.TEXT_GENERATOR, node_id="gen", muted=muted))
    graph.add_node(create_node(NodeKind.OUTPUT_DISPLAY, node_id="out"))
    graph.connect("text", OUTPUT, "gen", INPUT)
    graph.connect("gen", OUTPUT, "out", INPUT)
    return graph


def _build_editor_graph(with_image: bool, muted: bool = False) -> WorkflowGraph:
    """[img ->] editor.input-image, text -> editor.input-text, editor -> out_image / out_text"""
    graph = WorkflowGraph()
    graph.add_node(create_node(NodeKind.INPUT_TEXT, node_id="text", content="a red fox"))
    graph.add_node(create_node(NodeKind.IMAGE_EDITOR, node_id="editor", muted=muted))
    graph.add_node(create_node(NodeKind.OUTPUT_DISPLAY, node_id="out_image"))
    graph.add_node(create_node(NodeKind.OUTPUT_DISPLAY, node_id="out_text"))
    if with_image:
        graph.add_node(create_node(NodeKind.INPUT_IMAGE, node_id="img", content=PNG_A))
        graph.connect("img", OUTPUT, "editor", INPUT_IMAGE)
    graph.connect("text", OUTPUT, "editor", INPUT_TEXT)
    graph.connect("editor", OUTPUT_IMAGE, "out_image", INPUT)
    graph.connect("editor", OUTPUT_TEXT, "out_text", INPUT)
    return graph


# ======================================================================
# Test 1: 基本数据流与静音
# ======================================================================


class TestBasicDataflow:

    @pytest.mark.asyncio
    async def test_text_chain(self):
        client = _fake_client()
        graph = _build_text_chain()

        result = await WorkflowRunner(client).run(graph)

        client.text_generate.assert_awaited_once_with("hello")
        assert graph.nodes["out"].content == "HELLO"
        assert all(n.status == NodeStatus.COMPLETED for n in graph.nodes.values())
        assert result.status == RunStatus.COMPLETED
        assert result.notification == "completed"
        assert result.order == ["text", "gen", "out"]

    @pytest.mark.asyncio
    async def test_muted_generator_passes_prompt_through(self):
        client = _fake_client()
        graph = _build_text_chain(muted=True)

        result = await WorkflowRunner(client).run(graph)

        client.text_generate.assert_not_called()
        assert graph.nodes["out"].content == "hello"
        assert graph.nodes["gen"].status == NodeStatus.COMPLETED
        assert result.notification == "completed"

    @pytest.mark.asyncio
    async def test_muted_node_copies_first_input_to_every_output(self):
        """静音的图像编辑器：第一个输入（图像）复制到图像与文本两个输出."""
        client = _fake_client()
        graph = _build_editor_graph(with_image=True, muted=True)

        await WorkflowRunner(client).run(graph)

        assert graph.nodes["out_image"].content == PNG_A
        assert graph.nodes["out_text"].content == PNG_A
        assert client.mock_calls == []

    @pytest.mark.asyncio
    async def test_rerun_resets_derived_content_but_keeps_sources(self):
        client = _fake_client()
        graph = _build_text_chain()
        runner = WorkflowRunner(client)
        await runner.run(graph)

        client.text_generate.return_value = "AGAIN"
        await runner.run(graph)

        assert graph.nodes["text"].content == "hello"
        assert graph.nodes["out"].content == "AGAIN"

    @pytest.mark.asyncio
    async def test_source_content_survives_execution(self):
        """源节点执行期间 content 保持为用户输入，不会被进度信息覆盖."""
        client = _fake_client()
        graph = _build_editor_graph(with_image=True)
        events: list[tuple[str, dict]] = []

        await WorkflowRunner(client, on_event=lambda t, d: events.append((t, d))).run(graph)

        source_updates = [
            (d["node_id"], d["status"], d["content"])
            for t, d in events
            if t == "node_status" and d["node_id"] in ("text", "img")
        ]
        assert source_updates == [
            ("text", "processing", "a red fox"), ("text", "completed", "a red fox"),
            ("img", "processing", PNG_A), ("img", "completed", PNG_A),
        ]
        client.image_edit.assert_awaited_once_with(ImagePart(data="QUFB", mime_type="image/png"), "a red fox")
        assert graph.nodes["text"].content == "a red fox"
        assert graph.nodes["img"].content == PNG_A


# ======================================================================
# Test 2: 多输入预设
# ======================================================================


class TestPresets:

    @pytest.mark.asyncio
    async def test_multi_image_preset_receives_images_in_edge_order(self):
        """三个图像源连接到多图端口：按边注册顺序传入，而不是节点注册顺序."""
        client = _fake_client()
        graph = WorkflowGraph()
        graph.add_node(create_node(NodeKind.INPUT_IMAGE, node_id="img_a", content=PNG_A))
        graph.add_node(create_node(NodeKind.INPUT_IMAGE, node_id="img_b", content=PNG_B))
        graph.add_node(create_node(NodeKind.INPUT_IMAGE, node_id="img_c", content=PNG_C))
        preset = graph.add_node(create_node(NodeKind.PRESET, node_id="preset", preset_id="combine-objects"))
        preset.prompt = "Combine"
        graph.add_node(create_node(NodeKind.OUTPUT_DISPLAY, node_id="out"))
        for source in ("img_c", "img_a", "img_b"):
            graph.connect(source, OUTPUT, "preset", INPUT_MULTI_IMAGE)
        graph.connect("preset", "output-0", "out", INPUT)

        runner = WorkflowRunner(client)
        result = await runner.run(graph)

        client.preset_execute.assert_awaited_once()
        images, prompt = client.preset_execute.await_args.args
        assert [img.data for img in images] == ["Q0ND", "QUFB", "QkJC"]
        assert prompt == "Combine"
        assert graph.nodes["out"].content == RESULT_IMAGE
        assert len(result.history) == 1
        assert result.history[0].data_ref == RESULT_IMAGE
        assert result.history[0].prompt == "Combine"

    @pytest.mark.asyncio
    async def test_preset_without_images_fails(self):
        client = _fake_client()
        graph = WorkflowGraph()
        graph.add_node(create_node(NodeKind.PRESET, node_id="preset", preset_id="combine-objects"))

        result = await WorkflowRunner(client).run(graph)

        assert result.notification == "error:Missing required inputs for preset: Combine Objects"
        assert graph.nodes["preset"].status == NodeStatus.ERROR
        client.preset_execute.assert_not_called()


# ======================================================================
# Test 3: 图像编辑器
# ======================================================================


class TestImageEditor:

    @pytest.mark.asyncio
    async def test_generate_mode_without_image(self):
        client = _fake_client()
        graph = _build_editor_graph(with_image=False)

        result = await WorkflowRunner(client).run(graph)

        client.image_generate.assert_awaited_once_with("a red fox")
        client.image_edit.assert_not_called()
        assert graph.nodes["out_image"].content == RESULT_IMAGE
        assert graph.nodes["out_text"].content is None
        assert [h.prompt for h in result.history] == ["a red fox"]

    @pytest.mark.asyncio
    async def test_edit_mode_with_image(self):
        client = _fake_client()
        graph = _build_editor_graph(with_image=True)

        await WorkflowRunner(client).run(graph)

        image, prompt = client.image_edit.await_args.args
        assert image == ImagePart(data="QUFB", mime_type="image/png")
        assert prompt == "a red fox"
        assert graph.nodes["out_image"].content == RESULT_IMAGE
        assert graph.nodes["out_text"].content == "edited"

    @pytest.mark.asyncio
    async def test_edit_without_image_in_response_is_an_error(self):
        client = _fake_client()
        client.image_edit.return_value = ImageResult(image=None, text="Refused by safety filter")
        graph = _build_editor_graph(with_image=True)

        result = await WorkflowRunner(client).run(graph)

        assert graph.nodes["editor"].error_message == "Refused by safety filter"
        assert result.history == []

    @pytest.mark.asyncio
    async def test_missing_prompt(self):
        client = _fake_client()
        graph = WorkflowGraph()
        graph.add_node(create_node(NodeKind.IMAGE_EDITOR, node_id="editor"))

        result = await WorkflowRunner(client).run(graph)

        assert result.error == "A text prompt is required for image generation/editing."


# ======================================================================
# Test 4: 失败即停
# ======================================================================


class TestFailFast:

    @pytest.mark.asyncio
    async def test_failure_stops_run_and_leaves_downstream_idle(self):
        """text -> gen1 -> gen2 -> out；gen2 失败，out 保持 IDLE."""
        client = _fake_client()
        client.text_generate.side_effect = ["step one", PermanentTaskError("Error: boom (Status: INVALID_ARGUMENT)")]
        graph = WorkflowGraph()
        graph.add_node(create_node(NodeKind.INPUT_TEXT, node_id="text", content="hello"))
        graph.add_node(create_node(NodeKind.TEXT_GENERATOR, node_id="gen1"))
        graph.add_node(create_node(NodeKind.TEXT_GENERATOR, node_id="gen2"))
        graph.add_node(create_node(NodeKind.OUTPUT_DISPLAY, node_id="out"))
        graph.connect("text", OUTPUT, "gen1", INPUT)
        graph.connect("gen1", OUTPUT, "gen2", INPUT)
        graph.connect("gen2", OUTPUT, "out", INPUT)

        result = await WorkflowRunner(client).run(graph)

        assert result.status == RunStatus.ERROR
        assert result.notification == "error:Error: boom (Status: INVALID_ARGUMENT)"
        assert result.failed_node_id == "gen2"
        assert result.executed == ["text", "gen1", "gen2"]
        assert graph.nodes["gen1"].status == NodeStatus.COMPLETED
        assert graph.nodes["gen2"].status == NodeStatus.ERROR
        assert graph.nodes["gen2"].error_message == "Error: boom (Status: INVALID_ARGUMENT)"
        assert graph.nodes["out"].status == NodeStatus.IDLE
        assert graph.nodes["out"].content is None

    @pytest.mark.asyncio
    async def test_error_cleared_on_next_run(self):
        client = _fake_client()
        client.text_generate.side_effect = [PermanentTaskError("Error: boom"), "fine"]
        graph = _build_text_chain()
        runner = WorkflowRunner(client)

        first = await runner.run(graph)
        second = await runner.run(graph)

        assert first.error == "Error: boom"
        assert second.notification == "completed"
        assert graph.nodes["gen"].error_message is None


# ======================================================================
# Test 5: 视频进度
# ======================================================================


class TestVideoProgress:

    @pytest.mark.asyncio
    async def test_progress_events_while_processing(self):
        client = _fake_client()
        graph = WorkflowGraph()
        graph.add_node(create_node(NodeKind.INPUT_TEXT, node_id="text", content="waves"))
        video = graph.add_node(create_node(NodeKind.VIDEO_GENERATOR, node_id="video"))
        graph.add_node(create_node(NodeKind.OUTPUT_DISPLAY, node_id="out"))
        graph.connect("text", OUTPUT, "video", INPUT_TEXT)
        graph.connect("video", OUTPUT, "out", INPUT)

        seen_during: list[tuple[NodeStatus, object]] = []

        async def fake_video(image, prompt, on_progress=None):
            for message in ("Starting video generation...", "Checking video status... in_progress (40%)"):
                on_progress(message)
                seen_during.append((video.status, video.content))
            return "/tmp/media/vid_1.mp4"

        client.video_generate.side_effect = fake_video
        events: list[tuple[str, dict]] = []
        runner = WorkflowRunner(client, on_event=lambda t, d: events.append((t, d)))

        await runner.run(graph)

        progress = [d["progress"] for t, d in events if t == "node_progress"]
        assert progress == ["Starting video generation...", "Checking video status... in_progress (40%)"]
        assert seen_during[-1] == (NodeStatus.PROCESSING, {"progress": "Checking video status... in_progress (40%)"})
        assert graph.nodes["out"].content == "/tmp/media/vid_1.mp4"
        assert client.video_generate.await_args.args[0] is None  # 无参考图


# ======================================================================
# Test 6: 单飞、事件流、环
# ======================================================================


class TestRunner:

    @pytest.mark.asyncio
    async def test_second_concurrent_run_rejected(self):
        client = _fake_client()
        release = asyncio.Event()

        async def slow_generate(prompt):
            await release.wait()
            return "done"

        client.text_generate.side_effect = slow_generate
        graph = _build_text_chain()
        runner = WorkflowRunner(client)

        first = asyncio.create_task(runner.run(graph))
        await asyncio.sleep(0)
        assert runner.is_running
        with pytest.raises(RunInProgressError):
            await runner.run(graph)

        release.set()
        result = await first
        assert result.notification == "completed"
        assert not runner.is_running

    @pytest.mark.asyncio
    async def test_rejected_stream_sees_no_events_from_active_run(self):
        """被单飞锁拒绝的事件流不应收到正在进行的另一次运行的事件."""
        client = _fake_client()
        release = asyncio.Event()

        async def slow_generate(prompt):
            await release.wait()
            return "done"

        client.text_generate.side_effect = slow_generate
        runner = WorkflowRunner(client)
        first = asyncio.create_task(runner.run(_build_text_chain()))
        await asyncio.sleep(0)

        received: list[RunEventType] = []

        async def consume():
            async for event in runner.stream(_build_text_chain()):
                received.append(event.type)

        second = asyncio.create_task(consume())
        await asyncio.sleep(0)
        release.set()

        with pytest.raises(RunInProgressError):
            await second
        assert (await first).notification == "completed"
        assert received == []

    @pytest.mark.asyncio
    async def test_executor_tracks_only_current_graph(self):
        """每次运行开始时清空上一张图的节点跟踪，不同图中同名节点互不串扰."""
        client = _fake_client()
        runner = WorkflowRunner(client)
        await runner.run(_build_editor_graph(with_image=False))

        second = _build_text_chain()
        events: list[dict] = []
        runner._on_event = lambda t, d: events.append(d) if t == "node_status" else None
        await runner.run(second)

        assert set(runner._executor._current) == set(second.nodes)
        assert all(runner._executor._current[nid] is node for nid, node in second.nodes.items())
        text_events = [d for d in events if d["node_id"] == "text"]
        assert all(d["content"] == "hello" for d in text_events)

    @pytest.mark.asyncio
    async def test_stream_yields_ordered_events(self):
        client = _fake_client()
        graph = _build_text_chain()
        runner = WorkflowRunner(client)

        events = [event async for event in runner.stream(graph)]

        assert events[0].type == RunEventType.RUN_STARTED
        assert events[-1].type == RunEventType.RUN_COMPLETED
        statuses = [(e.node_id, e.data["status"]) for e in events if e.type == RunEventType.NODE_STATUS]
        assert statuses == [
            ("text", "processing"), ("text", "completed"),
            ("gen", "processing"), ("gen", "completed"),
            ("out", "processing"), ("out", "completed"),
        ]

    @pytest.mark.asyncio
    async def test_closing_stream_cancels_run(self):
        client = _fake_client()
        async def never_returns(prompt):
            await asyncio.Event().wait()

        client.text_generate.side_effect = never_returns
        graph = _build_text_chain()
        runner = WorkflowRunner(client)

        stream = runner.stream(graph)
        async for event in stream:
            if event.node_id == "gen" and event.data.get("status") == "processing":
                break
        await stream.aclose()

        assert not runner.is_running

    @pytest.mark.asyncio
    async def test_failing_event_callback_does_not_break_run(self):
        def broken(*_):
            raise RuntimeError("ui crashed")

        result = await WorkflowRunner(_fake_client(), on_event=broken).run(_build_text_chain())
        assert result.notification == "completed"

    @pytest.mark.asyncio
    async def test_cycle_nodes_stay_idle(self):
        client = _fake_client()
        graph = WorkflowGraph()
        graph.add_node(create_node(NodeKind.INPUT_TEXT, node_id="text", content="hi"))
        graph.add_node(create_node(NodeKind.TEXT_GENERATOR, node_id="a"))
        graph.add_node(create_node(NodeKind.TEXT_GENERATOR, node_id="b"))
        graph.add_node(create_node(NodeKind.OUTPUT_DISPLAY, node_id="out"))
        graph.connect("a", OUTPUT, "b", INPUT)
        graph.connect("b", OUTPUT, "a", INPUT)
        graph.connect("text", OUTPUT, "out", INPUT)

        result = await WorkflowRunner(client, strict_cycles=False).run(graph)
        assert result.notification == "completed"
        assert result.executed == ["text", "out"]
        assert graph.nodes["a"].status == NodeStatus.IDLE
        assert graph.nodes["b"].status == NodeStatus.IDLE

        strict = await WorkflowRunner(client, strict_cycles=True).run(graph)
        assert strict.status == RunStatus.ERROR
        assert strict.executed == []
        assert all(n.status == NodeStatus.IDLE for n in graph.nodes.values())

    @pytest.mark.asyncio
    async def test_history_appended_across_runs(self):
        client = _fake_client()
        graph = _build_editor_graph(with_image=False)
        runner = WorkflowRunner(client)

        first = await runner.run(graph)
        second = await runner.run(graph)

        assert len(runner.history) == 2
        assert first.history == runner.history[:1]
        assert second.history == runner.history[1:]


# ======================================================================
# Test 7: 图像标准化
# ======================================================================


class TestImageNormalization:

    def test_accepted_shapes(self, tmp_path):
        expected = ImagePart(data="QUFB", mime_type="image/png")
        assert to_image_part(PNG_A) == expected
        assert to_image_part({"data": "QUFB", "mimeType": "image/png"}) == expected
        assert to_image_part({"image": PNG_A, "text": None}) == expected
        assert to_image_part(expected) is expected

        path = tmp_path / "photo.jpg"
        path.write_bytes(b"AAA")
        part = to_image_part(str(path))
        assert part.mime_type == "image/jpeg"
        assert base64.b64decode(part.data) == b"AAA"

    def test_non_images(self, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("hi")
        assert to_image_part(None) is None
        assert to_image_part("just some text") is None
        assert to_image_part(str(notes)) is None
        assert to_image_part({"image": None}) is None
