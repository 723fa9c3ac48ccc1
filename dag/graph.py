"""
WorkflowGraph - typed node/port/edge container for generative workflows.
WorkflowGraph —— 生成式工作流的类型化节点/端口/边容器。

The WorkflowGraph holds:
  - nodes: dict of Node, in registration order (scheduler tie-breaks rely on it)
  - edges: list of Edge, in registration order (multi-port aggregation relies on it)

WorkflowGraph 包含：
  - nodes: Node 字典，保持注册顺序（调度器的并列决胜依赖该顺序）
  - edges: Edge 列表，保持注册顺序（多输入端口聚合依赖该顺序）

Key operations:
  - connect():     validated edge creation with single-assignment semantics
  - edges_into():  which edges target a given input port
  - summary():     one-line status overview for logging

核心操作：
  - connect():     带校验的连线，非多输入端口采用单一赋值语义（新边替换旧边）
  - edges_into():  查询指向某个输入端口的所有边
  - summary():     单行状态摘要，用于日志
"""

from __future__ import annotations

import logging

from schema import Edge, Node, NodeStatus, ports_compatible

logger = logging.getLogger(__name__)


class GraphConnectionError(Exception):
    """
    Raised when an edge would violate the graph's connection rules.
    当连线违反图的连接规则（端点不存在、类型不兼容、自环）时抛出。
    """
    pass


class WorkflowGraph:
    """
    Directed graph of typed nodes connected port-to-port.
    以端口对端口方式连接的类型化节点有向图。

    The engine only reads the structure and mutates node status/content;
    editing helpers here are used by collaborators (CLI, tests).
    执行引擎只读取图结构并修改节点的状态/内容；
    这里的编辑方法供外部协作者（CLI、测试）使用。
    """

    def __init__(self, nodes: list[Node] | None = None, edges: list[Edge] | None = None):
        self.nodes: dict[str, Node] = {}
        self.edges: list[Edge] = []
        for node in nodes or []:
            self.add_node(node)
        for edge in edges or []:
            self.edges.append(edge)
        self._validate_graph()

    # ------------------------------------------------------------------
    # Node queries
    # 节点查询
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Node:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise KeyError(f"Node '{node_id}' not found") from None

    def edges_into(self, node_id: str, port_id: str) -> list[Edge]:
        """
        Return edges terminating at `node_id`.`port_id`, in registration order.
        返回指向 `node_id`.`port_id` 的所有边（按注册顺序）。
        """
        return [e for e in self.edges if e.target_node_id == node_id and e.target_port_id == port_id]

    def incoming_edges(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.target_node_id == node_id]

    def outgoing_edges(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.source_node_id == node_id]

    # ------------------------------------------------------------------
    # Editing (collaborator side)
    # 图编辑（协作者侧）
    # ------------------------------------------------------------------

    def add_node(self, node: Node) -> Node:
        if node.id in self.nodes:
            raise GraphConnectionError(f"Node '{node.id}' already exists")
        self.nodes[node.id] = node
        logger.debug("[Graph] Node added: %s (%s)", node.id, node.kind.value)
        return node

    def remove_node(self, node_id: str) -> None:
        """
        Remove a node and every edge attached to it.
        移除节点及其所有关联边。
        """
        self.get_node(node_id)
        del self.nodes[node_id]
        self.edges = [e for e in self.edges if e.source_node_id != node_id and e.target_node_id != node_id]
        logger.debug("[Graph] Node removed: %s", node_id)

    def set_muted(self, node_id: str, muted: bool = True) -> None:
        self.get_node(node_id).muted = muted

    def connect(self, source_node_id: str, source_port_id: str, target_node_id: str, target_port_id: str) -> Edge:
        """
        Create an edge after validating it.
        校验后创建一条边。

        Rules:
          - both endpoints exist, no self-loop
          - data kinds compatible (equal, or either is `any`)
          - a non-multi input keeps one edge: an existing edge is replaced
          - a multi input accepts unbounded fan-in

        规则：
          - 两端节点与端口必须存在，不允许自环
          - 数据类型兼容（相同，或任一端为 `any`）
          - 非多输入端口只保留一条边：已有边会被替换
          - 多输入端口允许任意多条入边
        """
        if source_node_id == target_node_id:
            raise GraphConnectionError(f"Cannot connect node '{source_node_id}' to itself")

        source = self.get_node(source_node_id)
        target = self.get_node(target_node_id)
        out_port = source.get_output(source_port_id)
        in_port = target.get_input(target_port_id)
        if out_port is None:
            raise GraphConnectionError(f"Node '{source_node_id}' has no output port '{source_port_id}'")
        if in_port is None:
            raise GraphConnectionError(f"Node '{target_node_id}' has no input port '{target_port_id}'")
        if not ports_compatible(out_port.data_kind, in_port.data_kind):
            raise GraphConnectionError(
                f"Incompatible ports: {source_node_id}.{source_port_id} ({out_port.data_kind.value}) -> "
                f"{target_node_id}.{target_port_id} ({in_port.data_kind.value})"
            )

        if not in_port.multi:
            for existing in self.edges_into(target_node_id, target_port_id):
                self.edges.remove(existing)
                logger.debug("[Graph] Replaced edge %s on %s.%s", existing.id, target_node_id, target_port_id)

        edge = Edge(
            source_node_id=source_node_id,
            source_port_id=source_port_id,
            target_node_id=target_node_id,
            target_port_id=target_port_id,
        )
        self.edges.append(edge)
        logger.debug("[Graph] Edge added: %s.%s -> %s.%s", source_node_id, source_port_id, target_node_id, target_port_id)
        return edge

    def connect_to_node(self, source_node_id: str, source_port_id: str, target_node_id: str) -> Edge:
        """
        Connect to the first compatible input of the target that is free
        (or multi), the way a drop onto a node body picks a port.
        连接到目标节点第一个兼容且空闲（或可多连）的输入端口，
        对应把连线拖放到节点主体上时自动选择端口的行为。
        """
        source = self.get_node(source_node_id)
        target = self.get_node(target_node_id)
        out_port = source.get_output(source_port_id)
        if out_port is None:
            raise GraphConnectionError(f"Node '{source_node_id}' has no output port '{source_port_id}'")

        for in_port in target.inputs:
            if not ports_compatible(out_port.data_kind, in_port.data_kind):
                continue
            if in_port.multi or not self.edges_into(target_node_id, in_port.id):
                return self.connect(source_node_id, source_port_id, target_node_id, in_port.id)

        raise GraphConnectionError(
            f"No free input on '{target_node_id}' accepts {out_port.data_kind.value} data"
        )

    def disconnect(self, edge_id: str) -> None:
        before = len(self.edges)
        self.edges = [e for e in self.edges if e.id != edge_id]
        if len(self.edges) == before:
            raise KeyError(f"Edge '{edge_id}' not found")

    # ------------------------------------------------------------------
    # Validation
    # 校验
    # ------------------------------------------------------------------

    def _validate_graph(self) -> None:
        """
        Basic validation of a supplied snapshot: edges reference existing nodes.
        对外部传入的图快照做基础校验：边的端点必须存在于 nodes 中。
        """
        for e in self.edges:
            if e.source_node_id not in self.nodes:
                raise GraphConnectionError(f"Edge {e.id}: source '{e.source_node_id}' not found in nodes")
            if e.target_node_id not in self.nodes:
                raise GraphConnectionError(f"Edge {e.id}: target '{e.target_node_id}' not found in nodes")

    # ------------------------------------------------------------------
    # Display helpers
    # 展示辅助方法
    # ------------------------------------------------------------------

    def summary(self) -> str:
        """
        One-line summary for logging, e.g. Graph[4 nodes, 3 edges: 2 completed, 2 idle]
        生成单行状态摘要，用于日志输出。
        """
        status_counts: dict[str, int] = {}
        for n in self.nodes.values():
            status_counts[n.status.value] = status_counts.get(n.status.value, 0) + 1
        parts = [f"{v} {k}" for k, v in status_counts.items()]
        return f"Graph[{len(self.nodes)} nodes, {len(self.edges)} edges: {', '.join(parts)}]"

    def nodes_with_status(self, status: NodeStatus) -> list[Node]:
        return [n for n in self.nodes.values() if n.status == status]
