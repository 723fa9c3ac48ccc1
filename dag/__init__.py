"""
DAG module - Core engine for workflow graph execution.
DAG 模块 —— 工作流图执行的核心引擎。

Components:
  - graph.py:         WorkflowGraph data structure and connection rules
  - nodes.py:         node factory with per-kind default ports
  - scheduler.py:     Kahn topological ordering
  - resolver.py:      input resolution from published outputs
  - state_machine.py: Node lifecycle state machine
  - executor.py:      per-node dispatch
  - runner.py:        whole-run controller (fail-fast, single-flight)

模块组成：
  - graph.py:         WorkflowGraph 数据结构与连线规则
  - nodes.py:         节点工厂（按类型生成默认端口）
  - scheduler.py:     Kahn 拓扑排序
  - resolver.py:      从已发布输出解析节点输入
  - state_machine.py: 节点生命周期状态机（强制合法状态转移）
  - executor.py:      单节点分派执行
  - runner.py:        整图运行控制（失败即停、单飞）
"""

from dag.graph import GraphConnectionError, WorkflowGraph   # 工作流图
from dag.nodes import create_node                           # 节点工厂
from dag.scheduler import CyclicGraphError, topological_order
from dag.resolver import OutputStore, resolve_inputs
from dag.state_machine import InvalidTransitionError, NodeStateMachine
from dag.executor import NodeExecutionError, NodeExecutor, NodeValidationError
from dag.runner import RunInProgressError, WorkflowRunner   # 执行控制器
