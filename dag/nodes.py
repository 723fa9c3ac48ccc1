"""
Node factory - builds nodes with the default port layout for each kind.
节点工厂 —— 按节点类型构建带默认端口布局的节点。
"""

from __future__ import annotations

from typing import Any

from presets import get_preset
from schema import DataKind, Node, NodeKind, Port

# Well-known port ids (unique within a node)
# 约定的端口 ID（节点内唯一）
INPUT = "input"
INPUT_TEXT = "input-text"
INPUT_IMAGE = "input-image"
INPUT_MULTI_IMAGE = "input-multi-image"
OUTPUT = "output"
OUTPUT_TEXT = "output-text"
OUTPUT_IMAGE = "output-image"


def _preset_node(preset_id: str | None) -> dict[str, Any]:
    if not preset_id:
        raise ValueError("A preset node requires a preset_id")
    preset = get_preset(preset_id)

    # Several image-only inputs collapse into one multi-image port
    # 多个纯图像输入合并为一个多图端口（扇入聚合）
    if len(preset.inputs) > 1 and all(p.data_kind == DataKind.IMAGE for p in preset.inputs):
        inputs = [Port(id=INPUT_MULTI_IMAGE, label="Images", data_kind=DataKind.IMAGE, multi=True)]
    else:
        inputs = [
            Port(id=f"input-{i}", label=spec.label, data_kind=spec.data_kind)
            for i, spec in enumerate(preset.inputs)
        ]
    outputs = [
        Port(id=f"output-{i}", label=spec.label, data_kind=spec.data_kind)
        for i, spec in enumerate(preset.outputs)
    ]
    return {
        "label": preset.label,
        "prompt": preset.prompt,
        "preset_id": preset_id,
        "inputs": inputs,
        "outputs": outputs,
    }


def create_node(
    kind: NodeKind,
    node_id: str | None = None,
    content: Any = None,
    preset_id: str | None = None,
    muted: bool = False,
) -> Node:
    """
    Create a node of `kind` with its standard ports.
    创建 `kind` 类型的节点并配置标准端口。

    `content` seeds input nodes (text or image reference).
    Preset nodes need `preset_id`; unknown ids raise KeyError.
    """
    text, image, video, any_ = DataKind.TEXT, DataKind.IMAGE, DataKind.VIDEO, DataKind.ANY
    if kind == NodeKind.INPUT_TEXT:
        fields = {"label": "Text Input", "outputs": [Port(id=OUTPUT, label="Text", data_kind=text)]}
    elif kind == NodeKind.INPUT_IMAGE:
        fields = {"label": "Image Input", "outputs": [Port(id=OUTPUT, label="Image", data_kind=image)]}
    elif kind == NodeKind.TEXT_GENERATOR:
        fields = {
            "label": "Text Generator",
            "inputs": [Port(id=INPUT, label="Prompt", data_kind=text)],
            "outputs": [Port(id=OUTPUT, label="Text", data_kind=text)],
        }
    elif kind == NodeKind.IMAGE_EDITOR:
        fields = {
            "label": "Image Generator/Editor",
            "inputs": [
                Port(id=INPUT_IMAGE, label="Image (Optional)", data_kind=image),
                Port(id=INPUT_TEXT, label="Prompt", data_kind=text),
            ],
            "outputs": [
                Port(id=OUTPUT_IMAGE, label="Image", data_kind=image),
                Port(id=OUTPUT_TEXT, label="Text", data_kind=text),
            ],
        }
    elif kind == NodeKind.VIDEO_GENERATOR:
        fields = {
            "label": "Video Generator",
            "inputs": [
                Port(id=INPUT_IMAGE, label="Image", data_kind=image),
                Port(id=INPUT_TEXT, label="Text", data_kind=text),
            ],
            "outputs": [Port(id=OUTPUT, label="Video", data_kind=video)],
        }
    elif kind == NodeKind.OUTPUT_DISPLAY:
        fields = {"label": "Output", "inputs": [Port(id=INPUT, label="Input", data_kind=any_)]}
    elif kind == NodeKind.PRESET:
        fields = _preset_node(preset_id)
    else:
        raise ValueError(f"Unknown node kind: {kind}")

    if node_id is not None:
        fields["id"] = node_id
    return Node(kind=kind, content=content, muted=muted, **fields)
