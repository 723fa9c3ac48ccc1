"""
Scheduler - topological execution order for a WorkflowGraph.
调度器 —— 为 WorkflowGraph 计算拓扑执行顺序。

Kahn's algorithm with a FIFO queue seeded in node-registration order, so
nodes that become ready at the same time run in the order they were added.
使用 Kahn 算法，FIFO 队列按节点注册顺序初始化，
因此同时就绪的节点按其添加顺序执行。

Nodes on a cycle (and nodes only reachable through one) never reach
in-degree zero and are left out of the order. By default this is only
logged; strict mode raises CyclicGraphError.
环上的节点（以及只能经由环到达的节点）入度永远不会降为 0，会被排除在顺序之外。
默认只记录警告；严格模式下抛出 CyclicGraphError。
"""

from __future__ import annotations

import logging
from collections import deque

from dag.graph import WorkflowGraph

logger = logging.getLogger(__name__)


class CyclicGraphError(Exception):
    """
    Raised in strict mode when some nodes cannot be scheduled.
    严格模式下存在无法调度的节点（图中有环）时抛出。
    """

    def __init__(self, node_ids: list[str]):
        self.node_ids = node_ids
        super().__init__(f"Graph contains a cycle; unschedulable nodes: {', '.join(node_ids)}")


def topological_order(graph: WorkflowGraph, strict: bool = False) -> list[str]:
    """
    Return node ids such that every edge's source precedes its target.
    返回节点 ID 序列，保证每条边的源节点排在目标节点之前。
    """
    # 邻接表与入度表；平行边分别计数
    adjacency: dict[str, list[str]] = {nid: [] for nid in graph.nodes}
    in_degree: dict[str, int] = {nid: 0 for nid in graph.nodes}
    for e in graph.edges:
        adjacency[e.source_node_id].append(e.target_node_id)
        in_degree[e.target_node_id] += 1

    # 入度为 0 的节点按注册顺序入队
    queue = deque(nid for nid in graph.nodes if in_degree[nid] == 0)
    order: list[str] = []

    while queue:
        nid = queue.popleft()
        order.append(nid)
        for target in adjacency[nid]:
            in_degree[target] -= 1
            if in_degree[target] == 0:
                queue.append(target)

    if len(order) != len(graph.nodes):
        skipped = find_unscheduled(graph, order)
        if strict:
            raise CyclicGraphError(skipped)
        logger.warning("[Scheduler] Cycle detected, %d node(s) will not run: %s", len(skipped), skipped)
    return order


def find_unscheduled(graph: WorkflowGraph, order: list[str]) -> list[str]:
    """Node ids missing from `order`, in registration order."""
    scheduled = set(order)
    return [nid for nid in graph.nodes if nid not in scheduled]
