"""
Workflow Runner - top-level execution controller.
工作流运行器 —— 顶层执行控制器。

One run:
  1. Reset every node (IDLE, errors cleared, non-source content cleared)
  2. Compute the topological order (dag.scheduler)
  3. Execute nodes one at a time in that order (dag.executor)
  4. Stop at the first node error (fail-fast)
  5. Emit a terminal notification: completed, or error:<message>

一次运行：
  1. 重置所有节点（IDLE、清除错误、清空非源节点内容）
  2. 计算拓扑执行顺序（dag.scheduler）
  3. 按顺序逐个执行节点（dag.executor）
  4. 遇到第一个节点错误立即终止（fail-fast）
  5. 发出终止通知：completed 或 error:<message>

Runs are single-flight: starting a run while another is active raises
RunInProgressError. Nodes never execute concurrently.
运行是单飞的：已有运行进行中时再次启动会抛出 RunInProgressError。节点从不并发执行。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable

import config
from dag.executor import NodeExecutionError, NodeExecutor
from dag.graph import WorkflowGraph
from dag.resolver import OutputStore
from dag.scheduler import CyclicGraphError, topological_order
from schema import HistoryEntry, RunEvent, RunEventType, RunResult, RunStatus
from tasks.client import TaskClient

logger = logging.getLogger(__name__)


class RunInProgressError(Exception):
    """
    Raised when a run is requested while another one is active.
    已有运行进行中时再次请求运行会抛出此异常。
    """
    pass


class WorkflowRunner:
    """
    Drives whole-graph runs and fans out engine events.
    驱动整图运行，并向外分发引擎事件。

    Events reach consumers two ways:
      - on_event(event_type, data) callback, as in the rest of the engine
      - stream(graph): an ordered async iterator of RunEvent for one run

    事件通过两种方式送达：
      - on_event(event_type, data) 回调
      - stream(graph)：单次运行的有序异步事件流
    """

    def __init__(
        self,
        task_client: TaskClient,
        strict_cycles: bool | None = None,
        on_event: Callable[[str, dict[str, Any]], None] | None = None,
    ):
        self._strict_cycles = config.STRICT_CYCLES if strict_cycles is None else strict_cycles
        self._on_event = on_event
        self._lock = asyncio.Lock()
        self._queues: list[asyncio.Queue[RunEvent | None]] = []
        self._executor = NodeExecutor(task_client, on_event=self._publish)
        self.history: list[HistoryEntry] = []  # 追加式历史记录，跨运行累积

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Main entry points
    # 主入口
    # ------------------------------------------------------------------

    async def run(self, graph: WorkflowGraph) -> RunResult:
        """
        Execute the whole graph once and return the outcome.
        执行整张图一次并返回结果。
        """
        return await self._run_exclusive(graph, None)

    async def _run_exclusive(self, graph: WorkflowGraph, queue: asyncio.Queue[RunEvent | None] | None) -> RunResult:
        """
        Hold the single-flight lock for one run. A stream queue is attached
        only after the lock is taken, so it sees this run's events only.
        在单飞锁内执行一次运行；事件队列在取得锁之后才挂上，只接收本次运行的事件。
        """
        if self._lock.locked():
            raise RunInProgressError("A workflow run is already in progress")
        async with self._lock:
            if queue is not None:
                self._queues.append(queue)
            try:
                return await self._run(graph)
            finally:
                if queue is not None:
                    self._queues.remove(queue)

    async def stream(self, graph: WorkflowGraph) -> AsyncIterator[RunEvent]:
        """
        Run the graph and yield its events in order, ending after the
        terminal run_completed / run_failed event.
        运行整张图并按顺序产出事件，在终止事件（run_completed / run_failed）之后结束。

        Closing the iterator early (e.g. `aclose()`) cancels the run.
        提前关闭迭代器（如调用 `aclose()`）会取消本次运行。
        """
        queue: asyncio.Queue[RunEvent | None] = asyncio.Queue()
        task = asyncio.ensure_future(self._run_exclusive(graph, queue))
        task.add_done_callback(lambda _t: queue.put_nowait(None))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
            await task  # 透传 RunInProgressError 等异常
        finally:
            if not task.done():
                logger.info("[Runner] Event stream closed early, cancelling run")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def _run(self, graph: WorkflowGraph) -> RunResult:
        result = RunResult()
        history_start = len(self.history)
        self._publish(RunEventType.RUN_STARTED, {"notification": RunStatus.STARTED.value, "nodes": len(graph.nodes)})
        logger.info("[Runner] Workflow started: %s", graph.summary())

        self._executor.begin_run()
        for node in graph.nodes.values():
            self._executor.reset(node)

        try:
            result.order = topological_order(graph, strict=self._strict_cycles)
        except CyclicGraphError as exc:
            return self._fail(result, str(exc), None, history_start)

        outputs = OutputStore()
        for node_id in result.order:
            node = graph.nodes[node_id]
            result.executed.append(node_id)
            try:
                await self._executor.execute(node, graph, outputs, self.history)
            except NodeExecutionError as exc:
                return self._fail(result, exc.message, node_id, history_start)

        result.status = RunStatus.COMPLETED
        result.history = self.history[history_start:]
        self._publish(RunEventType.RUN_COMPLETED, {
            "notification": result.notification,
            "executed": list(result.executed),
        })
        logger.info("[Runner] Workflow completed successfully: %s", graph.summary())
        return result

    def _fail(self, result: RunResult, message: str, node_id: str | None, history_start: int) -> RunResult:
        result.status = RunStatus.ERROR
        result.error = message
        result.failed_node_id = node_id
        result.history = self.history[history_start:]
        self._publish(RunEventType.RUN_FAILED, {
            "node_id": node_id,
            "notification": result.notification,
            "error": message,
        })
        logger.error("[Runner] Workflow aborted at node %s: %s", node_id, message)
        return result

    # ------------------------------------------------------------------
    # Event fan-out
    # 事件分发
    # ------------------------------------------------------------------

    def _publish(self, event_type: RunEventType, data: dict[str, Any]) -> None:
        event = RunEvent(type=event_type, node_id=data.get("node_id"), data=data)
        for queue in self._queues:
            queue.put_nowait(event)
        if self._on_event is None:
            return
        try:
            self._on_event(event_type.value, data)
        except Exception:
            # UI errors should never crash the pipeline / UI 异常不能影响主流程
            logger.exception("[Runner] on_event callback failed for %s", event_type.value)
