"""
Preset catalogue - static descriptors for preset nodes.
预设目录 —— 预设节点的静态描述。

Each preset is keyed by a preset id and declares a label, a prompt template,
and its port specs. Node construction (dag.nodes.create_node) decides whether
the inputs collapse into a single multi-image port.
每个预设以 preset id 为键，声明名称、提示词模板和端口规格。
节点构造（dag.nodes.create_node）负责决定是否把多个图像输入合并为一个多图端口。
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from schema import DataKind


class PortSpec(BaseModel):
    """Port declaration without an id (ids are assigned per node)."""
    label: str
    data_kind: DataKind = DataKind.IMAGE


class PresetConfig(BaseModel):
    label: str
    prompt: str
    inputs: list[PortSpec] = Field(default_factory=list)
    outputs: list[PortSpec] = Field(default_factory=lambda: [PortSpec(label="Image")])


def _preset(label: str, prompt: str, *input_labels: str) -> PresetConfig:
    return PresetConfig(
        label=label,
        prompt=prompt,
        inputs=[PortSpec(label=name) for name in (input_labels or ("Image",))],
    )


PRESET_CONFIGS: dict[str, PresetConfig] = {
    "to-figure": _preset(
        "Image to Figure",
        "turn this photo into a character figure. Behind it, place a box with the character's image "
        "printed on it, and a computer showing the Blender modeling process on its screen. In front of "
        "the box, add a round plastic base with the character figure standing on it. set the scene "
        "indoors if possible",
    ),
    "change-angle": _preset(
        "Change Perspective",
        "change the Camera anglo a high-angled selfie perspective looking down at the woman, while "
        "preserving her exact facial features, expression, and clothing, Maintain the same living room "
        "interior background with the sofa, natural lighting, and overall photographic composition and style.",
    ),
    "arch-to-model": _preset(
        "Architecture to Model",
        "convert this photo into a architecture model. Behind the model, there should be a cardboard box "
        "with an image of the architecture from the photo on it. There should also be a computer, with the "
        "content on the computer screen showing the Blender modeling process of the figurine. In front of "
        "the cardboard box, place a cardstock and put the architecture model from the photo I provided on "
        "it. I hope the PVC material can be clearly presented. It would be even better if the background "
        "is indoors.",
    ),
    "combine-objects": _preset("Combine Objects", "Combine them", "Image 1", "Image 2"),
    "high-res": _preset("High Res Fix", "Enhance this image to high resolution"),
    "to-line-art": _preset("Image to Line Art", "Turn into hand-drawn line art"),
    "colorize-by-palette": _preset(
        "Colorize by Palette", "Colorize accurately using the palette", "Image", "Palette"
    ),
    "generate-char-sheet": _preset(
        "Generate Character Sheet",
        "Generate a character design sheet for me: Proportions (height comparison, head-to-body ratio), "
        "Three-view drawing (front, side, back), Expression Sheet, Pose Sheet → various common poses, "
        "Costume Design",
    ),
    "virtual-real-combo": _preset(
        "Virtual-Real Combo",
        "Add a couple sitting in the seats happily drinking coffee and talking, the characters are in a "
        "rough sketch cute illustration style",
    ),
    "anime-to-real": _preset(
        "Anime to Real",
        "Generate a highly detailed photo of a girl cosplaying this illustration, at Comiket. Exactly "
        "replicate the same pose, body posture, hand gestures, facial expression, and camera framing as in "
        "the original illustration. Keep the same angle, perspective, and composition, without any deviation",
    ),
    "pose-reference": _preset(
        "Pose Reference",
        "Change the person to the pose in the reference image accurately, professional studio photography",
        "Person", "Pose",
    ),
    "to-action-figure": _preset(
        "Image to Action Figure",
        "Transform the person in the photo into a highly detailed action figure. Place the action figure "
        "inside its original toy packaging box, which should be styled like a collectible item. The box "
        "should have dynamic artwork and a clear plastic window showing the figure. Place the box in a "
        "clean, professional studio environment, like for a product photoshoot. Visualize this in a highly "
        "realistic way with attention to fine details on both the figure and the packaging.",
    ),
    "to-funko-pop": _preset(
        "Image to Funko Pop",
        "Transform the person in the photo into the style of a Funko Pop figure packaging box, presented "
        "in an isometric perspective. Label the packaging with the title 'ZHOGUE'. Inside the box, showcase "
        "the figure based on the person in the photo, accompanied by their essential items (such as "
        "cosmetics, bags, or others). Next to the box, also display the actual figure itself outside of "
        "the packaging, rendered in a realistic and lifelike style.",
    ),
    "to-lego": _preset(
        "Image to LEGO",
        "Transform the person in the photo into the style of a LEGO minifigure packaging box, presented in "
        "an isometric perspective. Label the packaging with the title 'ZHOGUE'. Inside the box, showcase "
        "the LEGO minifigure based on the person in the photo, accompanied by their essential items (such "
        "as cosmetics, bags, or others) as LEGO accessories. Next to the box, also display the actual LEGO "
        "minifigure itself outside of the packaging, rendered in a realistic and lifelike style.",
    ),
    "to-knit-doll": _preset(
        "Image to Knitted Doll",
        "A close-up, professionally composed photograph showing a handmade crocheted yarn doll being gently "
        "held in both hands. The doll has a rounded shape and an adorable chibi-style appearance, with "
        "vivid color contrasts and rich details. The hands holding the doll appear natural and tender, with "
        "clearly visible finger posture, and the skin texture and light-shadow transitions look soft and "
        "realistic, conveying a warm, tangible touch. The background is slightly blurred, depicting an "
        "indoor setting with a warm wooden tabletop and natural light streaming in through a window, "
        "creating a cozy and intimate atmosphere. The overall image conveys a sense of exquisite "
        "craftsmanship and a cherished, heartwarming emotion.",
    ),
    "to-barbie": _preset(
        "Image to Barbie",
        "Transform the person in the photo into the style of a Barbie doll packaging box, presented in an "
        "isometric perspective. Label the packaging with the title 'ZHOGUE'. Inside the box, showcase the "
        "Barbie doll version of the person from the photo, accompanied by their essential items (such as "
        "cosmetics, bags, or others) designed as stylish Barbie accessories. Next to the box, also display "
        "the actual Barbie doll itself outside of the packaging, rendered in a realistic and lifelike "
        "style, resembling official Barbie promotional renders",
    ),
    "to-gundam": _preset(
        "Everything to Gundam",
        "Transform the person in the photo into the style of a Gundam model kit packaging box, presented "
        "in an isometric perspective. Label the packaging with the title 'ZHOGUE'. Inside the box, showcase "
        "a Gundam-style mecha version of the person from the photo, accompanied by their essential items "
        "(such as cosmetics, bags, or others) redesigned as futuristic mecha accessories. The packaging "
        "should resemble authentic Gunpla boxes, with technical illustrations, instruction-manual style "
        "details, and sci-fi typography. Next to the box, also display the actual Gundam-style mecha "
        "figure itself outside of the packaging, rendered in a realistic and lifelike style, similar to "
        "official Bandai promotional renders.",
    ),
    "generate-child": _preset(
        "Generate Child",
        "Generate what the child of the two people in the image would look like, professional photography",
        "Parent 1", "Parent 2",
    ),
    "product-render": _preset(
        "Product Design to Render",
        "turn this illustration of a perfume into a realistic version, Frosted glass bottle with a marble cap",
        "Design",
    ),
    "pro-photo": _preset(
        "Pro Photography Style",
        "Transform the person in the photo into highly stylized ultra-realistic portrait, with sharp facial "
        "features and flawless fair skin, standing confidently against a bold green gradient background. "
        "Dramatic, cinematic lighting highlights her facial structure, evoking the look of a luxury fashion "
        "magazine cover. Editorial photography style, high-detail, 4K resolution, symmetrical composition, "
        "minimalistic background",
    ),
    "lighting-reference": _preset(
        "Lighting Reference",
        "Change the lighting of the original image to match the reference image, professional photography",
        "Subject", "Light Ref",
    ),
    "generate-process": _preset(
        "Generate Drawing Process",
        "Generate a 4-panel drawing process for the character. Step 1: Line art, Step 2: Flat colors, "
        "Step 3: Add shadows, Step 4: Refine and finish. No text.",
        "Subject",
    ),
    "to-realistic": _preset("To Realistic Style", "turn this illustration into realistic version"),
    "to-keychain": _preset(
        "Image to Keychain", "Turn this photo into a cute keychain hanging on the bag in the photo", "Subject & Bag"
    ),
    "add-effect": _preset(
        "Add Effect", "Overlay the effect from the effect image onto the base image", "Base", "Effect"
    ),
    "product-packaging": _preset(
        "Product Packaging",
        "Apply the image onto the packaging box, placed in a minimalist setting, professional photography",
        "Sticker", "Box",
    ),
    "virtual-makeup": _preset(
        "Virtual Makeup",
        "Apply the makeup from the image to the person, keeping the original pose",
        "Face", "Makeup",
    ),
    "expression-reference": _preset(
        "Expression Reference", "Change the person's expression to match the new image", "Face", "Expression"
    ),
}


def get_preset(preset_id: str) -> PresetConfig:
    """
    Look up a preset descriptor. Raises KeyError for unknown ids.
    查找预设描述，未知 id 抛出 KeyError。
    """
    try:
        return PRESET_CONFIGS[preset_id]
    except KeyError:
        raise KeyError(f"Unknown preset id: {preset_id}") from None
