"""
Configuration module for genflow.
Loads settings from environment variables or .env file.
genflow 配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Generation API Configuration ---
# --- 生成服务 API 配置 ---
# Each task family (text / image / video) can point at its own OpenAI-compatible
# endpoint. Empty values fall back to API_KEY and the SDK's default base URL.
# 每个任务族（文本/图像/视频）可以指向各自的 OpenAI 兼容接口。
# 留空时回退到 API_KEY 以及 SDK 默认地址。
API_KEY = os.getenv("API_KEY", os.getenv("OPENAI_API_KEY", ""))  # 公共 API 密钥

TEXT_API_KEY = os.getenv("TEXT_API_KEY", "")
TEXT_MODEL = os.getenv("TEXT_MODEL", "gpt-4o-mini")      # 文本生成模型
TEXT_BASE_URL = os.getenv("TEXT_BASE_URL", "")

IMAGE_API_KEY = os.getenv("IMAGE_API_KEY", "")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gpt-image-1")    # 图像生成/编辑模型
IMAGE_BASE_URL = os.getenv("IMAGE_BASE_URL", "")

VIDEO_API_KEY = os.getenv("VIDEO_API_KEY", "")
VIDEO_MODEL = os.getenv("VIDEO_MODEL", "sora-2")         # 视频生成模型
VIDEO_BASE_URL = os.getenv("VIDEO_BASE_URL", "")

# --- Retry Policy ---
# --- 限流重试策略 ---
TASK_MAX_ATTEMPTS = int(os.getenv("TASK_MAX_ATTEMPTS", "3"))        # 总尝试次数（含首次）
RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "2.0"))      # 指数退避基数（秒）
RETRY_MAX_JITTER = float(os.getenv("RETRY_MAX_JITTER", "1.0"))      # 随机抖动上限（秒）

# --- Long-running Video Operations ---
# --- 视频长任务轮询 ---
VIDEO_POLL_INTERVAL = float(os.getenv("VIDEO_POLL_INTERVAL", "10"))  # 轮询间隔（秒）
MEDIA_DIR = os.path.expanduser(os.getenv("MEDIA_DIR", "~/.genflow/media"))  # 下载的视频文件保存目录

# --- Scheduling ---
# --- 调度 ---
STRICT_CYCLES = os.getenv("STRICT_CYCLES", "false").lower() == "true"  # True=遇到环直接报错，False=静默跳过环上节点
