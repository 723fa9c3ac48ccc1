"""
Task Client - the engine's only gateway to the generation API.
任务客户端 —— 执行引擎访问生成服务的唯一出口。

Wraps OpenAI-compatible endpoints (one AsyncOpenAI client per task family)
behind five operations:
  - text_generate(prompt)                       -> text
  - image_generate(prompt)                      -> image data URL
  - image_edit(image, prompt)                   -> ImageResult
  - preset_execute(images, prompt)              -> ImageResult
  - video_generate(image, prompt, on_progress)  -> saved video path

每个任务族（文本/图像/视频）各用一个 AsyncOpenAI 客户端，对外暴露上面五个操作。
所有 SDK 调用都经过 with_retry（限流指数退避）；视频采用长任务协议：
提交 -> 定时轮询 -> 下载结果。

Configuration is passed in explicitly (TaskClientConfig), so several
independently configured clients can coexist.
配置通过构造函数显式传入（TaskClientConfig），多个独立配置的客户端可以共存。
"""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
from pathlib import Path
from typing import Any, Awaitable, Callable

from openai import AsyncOpenAI

import config
from schema import ImagePart, ImageResult, ModelConfig, TaskClientConfig
from tasks.errors import PermanentTaskError, TaskError, TaskValidationError, TransportError
from tasks.retry import RetryPolicy, format_error, with_retry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

VIDEO_DONE = "completed"
VIDEO_FAILED = "failed"


def load_client_config() -> TaskClientConfig:
    """
    Build a TaskClientConfig from config.py (env / .env).
    从 config.py（环境变量 / .env）构建 TaskClientConfig。
    家族专属的 API Key 为空时回退到公共 API_KEY。
    """
    def family(api_key: str, model: str, base_url: str) -> ModelConfig:
        return ModelConfig(api_key=api_key or config.API_KEY, model=model, base_url=base_url)

    return TaskClientConfig(
        text=family(config.TEXT_API_KEY, config.TEXT_MODEL, config.TEXT_BASE_URL),
        image=family(config.IMAGE_API_KEY, config.IMAGE_MODEL, config.IMAGE_BASE_URL),
        video=family(config.VIDEO_API_KEY, config.VIDEO_MODEL, config.VIDEO_BASE_URL),
    )


def _as_upload(image: ImagePart, name: str) -> tuple[str, bytes, str]:
    """(filename, bytes, content_type) tuple accepted by the SDK's file params."""
    ext = mimetypes.guess_extension(image.mime_type) or ".png"
    return f"{name}{ext}", base64.b64decode(image.data), image.mime_type


class TaskClient:
    """
    Async client for text, image and video generation tasks.
    文本、图像、视频生成任务的异步客户端。

    Operations take explicit inputs and either return a result or raise a
    TaskError; none of them touches engine state.
    每个操作只接收显式输入，要么返回结果，要么抛出 TaskError，不修改引擎状态。
    """

    def __init__(
        self,
        client_config: TaskClientConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        poll_interval: float | None = None,
        media_dir: str | Path | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clients: dict[str, Any] | None = None,
    ):
        self.config = client_config or load_client_config()
        self._policy = retry_policy or RetryPolicy()
        self._poll_interval = config.VIDEO_POLL_INTERVAL if poll_interval is None else poll_interval
        self._media_dir = Path(media_dir or config.MEDIA_DIR)
        self._sleep = sleep
        self._clients: dict[str, Any] = dict(clients or {})  # 按任务族缓存的 SDK 客户端

    # ------------------------------------------------------------------
    # Plumbing
    # 基础设施
    # ------------------------------------------------------------------

    def _model_config(self, family: str) -> ModelConfig:
        return getattr(self.config, family)

    def _client(self, family: str) -> Any:
        if family not in self._clients:
            conf = self._model_config(family)
            self._clients[family] = AsyncOpenAI(
                api_key=conf.api_key or "PLACEHOLDER",
                base_url=conf.base_url or None,  # None -> SDK 默认地址
            )
        return self._clients[family]

    async def _call(self, call: Callable[[], Awaitable[Any]], context: str) -> Any:
        return await with_retry(call, self._policy, context=context)

    @staticmethod
    def _image_result(resp: Any, mime_type: str) -> ImageResult:
        """
        Collect the first image and any accompanying text from an images response.
        从 images 接口响应中取出第一张图与附带文字。
        """
        image: str | None = None
        texts: list[str] = []
        for item in getattr(resp, "data", None) or []:
            if image is None and getattr(item, "b64_json", None):
                image = ImagePart(data=item.b64_json, mime_type=mime_type).to_data_url()
            revised = getattr(item, "revised_prompt", None)
            if revised:
                texts.append(revised)
        return ImageResult(image=image, text="\n".join(texts) or None)

    # ------------------------------------------------------------------
    # Text
    # 文本
    # ------------------------------------------------------------------

    async def text_generate(self, prompt: str) -> str:
        if not prompt:
            raise TaskValidationError("Error: Prompt is empty.")
        client = self._client("text")
        model = self._model_config("text").model
        logger.info("[TaskClient] text_generate model=%s", model)

        resp = await self._call(
            lambda: client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
            ),
            "text_generate",
        )
        return resp.choices[0].message.content or "No text generated."

    # ------------------------------------------------------------------
    # Images
    # 图像
    # ------------------------------------------------------------------

    async def image_generate(self, prompt: str) -> str:
        """Generate an image from text, returned as a data URL."""
        if not prompt:
            raise TaskValidationError("Error: Prompt is empty.")
        client = self._client("image")
        model = self._model_config("image").model
        logger.info("[TaskClient] image_generate model=%s", model)

        resp = await self._call(
            lambda: client.images.generate(model=model, prompt=prompt, n=1),
            "image_generate",
        )
        result = self._image_result(resp, "image/png")
        if result.image is None:
            raise PermanentTaskError("Error: Image generation failed to produce an image part.")
        return result.image

    async def image_edit(self, image: ImagePart, prompt: str) -> ImageResult:
        """Edit one image with a prompt. The result image keeps the input's MIME type."""
        if not image or not image.data or not prompt:
            raise TaskValidationError("Error: Image or prompt is missing.")
        client = self._client("image")
        model = self._model_config("image").model
        logger.info("[TaskClient] image_edit model=%s", model)

        resp = await self._call(
            lambda: client.images.edit(model=model, image=_as_upload(image, "image"), prompt=prompt),
            "image_edit",
        )
        return self._image_result(resp, image.mime_type)

    async def preset_execute(self, images: list[ImagePart], prompt: str) -> ImageResult:
        """
        Run a preset prompt over one or more images.
        以预设提示词处理一张或多张图片；结果图使用第一张输入图的 MIME 类型。
        """
        if not images or not prompt:
            raise TaskValidationError("Error: Image(s) or prompt is missing.")
        client = self._client("image")
        model = self._model_config("image").model
        uploads = [_as_upload(img, f"image_{i}") for i, img in enumerate(images)]
        logger.info("[TaskClient] preset_execute model=%s images=%d", model, len(images))

        resp = await self._call(
            lambda: client.images.edit(model=model, image=uploads, prompt=prompt),
            "preset_execute",
        )
        return self._image_result(resp, images[0].mime_type)

    # ------------------------------------------------------------------
    # Video (long-running operation)
    # 视频（长任务）
    # ------------------------------------------------------------------

    async def video_generate(
        self,
        image: ImagePart | None,
        prompt: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """
        Submit a video job, poll it until done, download the result.
        提交视频任务，定时轮询直到完成，然后下载结果。

        on_progress receives human-readable phase messages in order; on failure
        it receives the error message before the error is raised.
        on_progress 按顺序接收阶段性进度文本；失败时先收到错误信息再抛出异常。

        Returns the path of the saved video file.
        返回保存后的视频文件路径。
        """
        report = on_progress or (lambda _msg: None)
        if not prompt:
            raise TaskValidationError("Error: Prompt is empty.")
        try:
            return await self._run_video(image, prompt, report)
        except TaskError as exc:
            report(str(exc))
            raise

    async def _run_video(self, image: ImagePart | None, prompt: str, report: ProgressCallback) -> str:
        client = self._client("video")
        model = self._model_config("video").model
        logger.info("[TaskClient] video_generate model=%s with_image=%s", model, image is not None)

        report("Starting video generation...")
        request: dict[str, Any] = {"model": model, "prompt": prompt}
        if image is not None:
            request["input_reference"] = _as_upload(image, "reference")
        video = await self._call(lambda: client.videos.create(**request), "video_generate")
        video_id = video.id

        report("Video processing has started. This may take a few minutes...")
        while video.status not in (VIDEO_DONE, VIDEO_FAILED):
            await self._sleep(self._poll_interval)
            video = await self._call(lambda: client.videos.retrieve(video_id), "video_status")
            progress = getattr(video, "progress", None)
            suffix = f" ({progress}%)" if progress is not None else ""
            report(f"Checking video status... {video.status}{suffix}")

        if video.status == VIDEO_FAILED:
            reason = getattr(video, "error", None)
            message = getattr(reason, "message", None) or "Video generation failed."
            raise PermanentTaskError(f"Error: {message}")

        report("Video processing complete. Fetching video...")
        data = await self._download_video(client, video_id)

        self._media_dir.mkdir(parents=True, exist_ok=True)
        path = self._media_dir / f"{video_id}.mp4"
        path.write_bytes(data)

        report("Video fetched successfully.")
        logger.info("[TaskClient] video %s saved to %s", video_id, path)
        return str(path)

    async def _download_video(self, client: Any, video_id: str) -> bytes:
        try:
            content = await client.videos.download_content(video_id)
            data = content.content
        except Exception as exc:
            raise TransportError(format_error(exc)) from exc
        if not data:
            raise TransportError(f"Error: Video {video_id} download returned no data.")
        return data
