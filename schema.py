"""
Pydantic data models for genflow.
Defines the core data structures shared by the graph, the engine and the task client.
genflow 的 Pydantic 数据模型。
定义了图模型、执行引擎与任务客户端之间共享的核心数据结构。
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _new_id() -> str:
    return str(uuid.uuid4())


# ======================================================================
# Ports
# 端口
# ======================================================================

class DataKind(str, Enum):
    """
    The kind of data a port carries.
    端口承载的数据类型。`any` 与任何类型兼容。
    """
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    ANY = "any"


class Port(BaseModel):
    """
    A typed attachment point on a node (input or output).
    节点上的类型化连接点（输入或输出）。
    """
    id: str = Field(description="Port ID, unique within its node")                      # 端口 ID（节点内唯一）
    label: str = ""                                                                     # 显示名称
    data_kind: DataKind = DataKind.ANY                                                  # 数据类型
    multi: bool = Field(default=False, description="Input port accepting fan-in edges")  # 是否允许多条入边（扇入聚合）


def ports_compatible(source: DataKind, target: DataKind) -> bool:
    """Equal kinds, or either side is `any`."""
    return source == target or DataKind.ANY in (source, target)


# ======================================================================
# Nodes
# 节点
# ======================================================================

class NodeKind(str, Enum):
    """
    Closed set of node kinds. Every kind must have a handler in NodeExecutor.
    节点类型的封闭集合。NodeExecutor 必须为每种类型提供处理函数。
    """
    INPUT_TEXT = "input-text"
    INPUT_IMAGE = "input-image"
    TEXT_GENERATOR = "text-generator"
    IMAGE_EDITOR = "image-editor"
    VIDEO_GENERATOR = "video-generator"
    PRESET = "preset"
    OUTPUT_DISPLAY = "output-display"


# Source nodes keep their user-supplied content across runs
# 源节点在每次运行前保留用户输入的内容
SOURCE_KINDS = frozenset({NodeKind.INPUT_TEXT, NodeKind.INPUT_IMAGE})


class NodeStatus(str, Enum):
    """
    Node lifecycle states, managed by NodeStateMachine.
    节点生命周期状态，由 NodeStateMachine 强制管理合法转移。

    Transition graph:
    转移图：
        IDLE -> PROCESSING -> COMPLETED
                           -> ERROR
        IDLE -> COMPLETED             (muted passthrough / 静音直通)
    """
    IDLE = "idle"               # 未执行
    PROCESSING = "processing"   # 正在执行（含重试与轮询等待）
    COMPLETED = "completed"     # 成功完成
    ERROR = "error"             # 执行失败


class Node(BaseModel):
    """
    A single node of the workflow graph.
    工作流图中的单个节点。

    `content` is an opaque payload whose shape depends on the kind:
    raw text, an image data URL, `{"image", "text"}` for editor/preset
    results, `{"progress"}` while a video renders, a video reference when done.
    `content` 的结构取决于节点类型：文本、图像 data URL、编辑器/预设的
    `{"image", "text"}` 结果、视频渲染中的 `{"progress"}`、完成后的视频引用。
    """
    id: str = Field(default_factory=_new_id)
    kind: NodeKind
    label: str = ""
    inputs: list[Port] = Field(default_factory=list)
    outputs: list[Port] = Field(default_factory=list)
    muted: bool = False
    status: NodeStatus = NodeStatus.IDLE
    content: Any = None
    error_message: str | None = None
    prompt: str | None = Field(default=None, description="Prompt template (preset nodes)")  # 预设节点的提示词模板
    preset_id: str | None = None

    def get_input(self, port_id: str) -> Port | None:
        return next((p for p in self.inputs if p.id == port_id), None)

    def get_output(self, port_id: str) -> Port | None:
        return next((p for p in self.outputs if p.id == port_id), None)


class Edge(BaseModel):
    """
    A directed connection from an output port to an input port.
    从输出端口到输入端口的有向连接。
    """
    id: str = Field(default_factory=_new_id)
    source_node_id: str
    source_port_id: str
    target_node_id: str
    target_port_id: str


# ======================================================================
# Task payloads
# 任务载荷
# ======================================================================

class ImagePart(BaseModel):
    """
    Normalized image payload handed to the task client.
    交给任务客户端的标准化图像数据：base64 数据 + MIME 类型。
    """
    data: str                       # base64 编码（不含 data URL 前缀）
    mime_type: str = "image/png"

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class ImageResult(BaseModel):
    """
    Result of an image edit / preset call. Either field may be missing.
    图像编辑/预设调用的结果，两个字段都可能为空。
    """
    image: str | None = None        # data URL
    text: str | None = None         # 模型附带的文字说明


# ======================================================================
# History
# 历史记录
# ======================================================================

class HistoryEntry(BaseModel):
    """
    One successful image-producing task. Never mutated after creation.
    一次成功的图像生成结果，创建后不可修改。
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    kind: str = "image"
    data_ref: str
    prompt: str
    created_at: float = Field(default_factory=time.time)


# ======================================================================
# Run events & results
# 运行事件与结果
# ======================================================================

class RunEventType(str, Enum):
    RUN_STARTED = "run_started"
    NODE_STATUS = "node_status"
    NODE_PROGRESS = "node_progress"
    HISTORY_APPENDED = "history_appended"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"


class RunEvent(BaseModel):
    """
    A single engine event, emitted in execution order.
    执行引擎按顺序发出的单个事件（状态变更、进度、历史追加、运行结束）。
    """
    type: RunEventType
    node_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class RunStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    ERROR = "error"


class RunResult(BaseModel):
    """
    Outcome of one workflow run.
    一次工作流运行的结果。
    """
    status: RunStatus = RunStatus.STARTED
    order: list[str] = Field(default_factory=list)          # 调度器给出的执行顺序
    executed: list[str] = Field(default_factory=list)       # 实际执行过的节点
    error: str | None = None
    failed_node_id: str | None = None
    history: list[HistoryEntry] = Field(default_factory=list)  # 本次运行新增的历史记录

    @property
    def notification(self) -> str:
        """Terminal notification: `started`, `completed` or `error:<message>`."""
        if self.status == RunStatus.ERROR:
            return f"error:{self.error}"
        return self.status.value


# ======================================================================
# Task client configuration
# 任务客户端配置
# ======================================================================

class ModelConfig(BaseModel):
    """
    Credentials and model for one task family.
    单个任务族的凭证与模型配置。
    """
    api_key: str = ""
    model: str
    base_url: str = ""


class TaskClientConfig(BaseModel):
    """
    Per-family configuration, supplied once before a run.
    按任务族划分的配置，在运行前一次性提供，运行期间不变。
    """
    text: ModelConfig
    image: ModelConfig
    video: ModelConfig
