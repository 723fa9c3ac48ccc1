"""
Dataflow Resolver - gathers a node's inputs from published upstream outputs.
数据流解析器 —— 从上游已发布的输出中收集节点的输入。

Published values live in an OutputStore keyed by (node_id, port_id).
Because the scheduler runs sources before targets, every connected value
a node needs has been published by the time it executes.
已发布的输出保存在以 (node_id, port_id) 为键的 OutputStore 中。
由于调度器保证源节点先于目标节点执行，节点执行时所需的上游值都已发布。
"""

from __future__ import annotations

import logging
from typing import Any

from dag.graph import WorkflowGraph
from schema import Node

logger = logging.getLogger(__name__)


class OutputStore:
    """
    Values published on output ports during a run.
    一次运行中各输出端口发布的值。
    """

    def __init__(self):
        self._values: dict[tuple[str, str], Any] = {}

    def publish(self, node_id: str, port_id: str, value: Any) -> None:
        self._values[(node_id, port_id)] = value

    def get(self, node_id: str, port_id: str) -> Any:
        return self._values.get((node_id, port_id))

    def has(self, node_id: str, port_id: str) -> bool:
        return (node_id, port_id) in self._values

    def for_node(self, node_id: str) -> dict[str, Any]:
        return {port: value for (nid, port), value in self._values.items() if nid == node_id}

    def clear(self) -> None:
        self._values.clear()


def resolve_inputs(node: Node, graph: WorkflowGraph, outputs: OutputStore) -> dict[str, Any]:
    """
    Map each input port id of `node` to its resolved value.
    将 `node` 的每个输入端口 ID 映射为解析后的值。

    - non-multi port: value of the single connected edge, or None
    - multi port: list of values in edge registration order

    - 非多输入端口：唯一连线的值，未连接时为 None
    - 多输入端口：按边注册顺序排列的值列表
    """
    resolved: dict[str, Any] = {}
    for port in node.inputs:
        edges = graph.edges_into(node.id, port.id)
        if port.multi:
            resolved[port.id] = [outputs.get(e.source_node_id, e.source_port_id) for e in edges]
            continue

        if len(edges) > 1:
            logger.warning(
                "[Resolver] %s.%s has %d edges but is not multi; using the first one",
                node.id, port.id, len(edges),
            )
        resolved[port.id] = outputs.get(edges[0].source_node_id, edges[0].source_port_id) if edges else None
    return resolved
