"""
Node State Machine - Validates and enforces node lifecycle transitions.
节点状态机 —— 校验并强制执行节点生命周期的合法状态转移。

The transition table is the single source of truth for what state changes
are legal during a run. Any invalid transition raises InvalidTransitionError.
Resetting a node to IDLE at run start is the only move outside the table.
转移表是运行期间合法状态变化的唯一权威来源，非法转移抛出 InvalidTransitionError。
运行开始时把节点重置为 IDLE 是表外唯一允许的操作。

Transition graph:
转移图：
    IDLE ──> PROCESSING ──> COMPLETED   (happy path / 正常路径)
                        ──> ERROR
    IDLE ─────────────────> COMPLETED   (muted passthrough / 静音直通)
"""

from __future__ import annotations

import logging
from typing import Callable

from schema import NodeStatus, Node

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """
    Raised when an illegal state transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """
    pass


VALID_TRANSITIONS: dict[NodeStatus, set[NodeStatus]] = {
    NodeStatus.IDLE:       {NodeStatus.PROCESSING, NodeStatus.COMPLETED},
    NodeStatus.PROCESSING: {NodeStatus.COMPLETED, NodeStatus.ERROR},
    # Terminal states within a run
    # 运行内的终态
    NodeStatus.COMPLETED:  set(),
    NodeStatus.ERROR:      set(),
}


class NodeStateMachine:
    """
    Validates and applies node state transitions.
    校验并应用节点状态转移。

    Provides a single `transition()` method that:
      1. Checks the VALID_TRANSITIONS table
      2. Applies the change to the node
      3. Fires an optional callback for UI/logging

    提供唯一的 `transition()` 方法，该方法：
      1. 查询 VALID_TRANSITIONS 表校验合法性
      2. 将状态变更应用到节点对象
      3. 触发可选回调函数（用于 UI 更新或日志）
    """

    def __init__(self, on_transition: Callable[[str, NodeStatus, NodeStatus], None] | None = None):
        """
        Args:
            on_transition: Optional callback(node_id, old_status, new_status)
                           for event-driven UI updates.
            on_transition: 可选回调 callback(node_id, 旧状态, 新状态)
                           用于事件驱动的 UI 实时更新。
        """
        self._on_transition = on_transition

    def can_transition(self, node: Node, new_status: NodeStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(node.status, set())

    def transition(self, node: Node, new_status: NodeStatus) -> None:
        """
        Apply a state transition. Raises InvalidTransitionError if illegal.
        应用状态转移。若转移非法则抛出 InvalidTransitionError。
        """
        if not self.can_transition(node, new_status):
            raise InvalidTransitionError(
                f"Node '{node.id}': cannot transition from {node.status.value} to {new_status.value}. "
                f"Valid targets: {sorted(s.value for s in VALID_TRANSITIONS.get(node.status, set()))}"
            )

        old_status = node.status
        node.status = new_status

        logger.debug("[SM] %s: %s -> %s", node.id, old_status.value, new_status.value)
        self._notify(node.id, old_status, new_status)

    def reset(self, node: Node) -> None:
        """
        Return a node to IDLE before a run, whatever its current state.
        运行开始前把节点重置为 IDLE（不受转移表约束）。
        """
        old_status = node.status
        node.status = NodeStatus.IDLE
        if old_status != NodeStatus.IDLE:
            self._notify(node.id, old_status, NodeStatus.IDLE)

    def _notify(self, node_id: str, old_status: NodeStatus, new_status: NodeStatus) -> None:
        if self._on_transition is None:
            return
        try:
            self._on_transition(node_id, old_status, new_status)
        except Exception:
            # UI errors should never crash the pipeline / UI 异常不能影响主流程
            logger.exception("[SM] on_transition callback failed for %s", node_id)
