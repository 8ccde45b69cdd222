"""
Settings - 配置管理

使用Pydantic Settings实现类型安全的配置管理
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MilvusSettings(BaseSettings):
    """Milvus连接配置"""
    model_config = SettingsConfigDict(env_prefix="MILVUS_", extra="ignore")

    uri: str = Field(default="http://localhost:19530", description="连接地址，本地文件路径即Milvus Lite")
    token: str = Field(default="", description="认证token")
    user: str = Field(default="", description="用户名")
    password: str = Field(default="", description="密码")
    db_name: str = Field(default="", description="数据库名称")
    collection: str = Field(default="ragbridge_collection", description="集合名称")
    dimension: int = Field(default=0, ge=0, description="稠密向量维度，集合不存在时必填")
    timeout: Optional[float] = Field(default=None, description="请求超时时间")


class ElasticsearchSettings(BaseSettings):
    """Elasticsearch连接配置"""
    model_config = SettingsConfigDict(env_prefix="ES_", extra="ignore")

    hosts: List[str] = Field(default=["http://localhost:9200"], description="节点地址")
    username: str = Field(default="", description="用户名")
    password: str = Field(default="", description="密码")
    api_key: str = Field(default="", description="API密钥")
    ca_certs: str = Field(default="", description="CA证书路径")
    index: str = Field(default="ragbridge", description="索引名称")
    top_k: int = Field(default=10, ge=1, description="默认返回结果数")


class DeepSeekSettings(BaseSettings):
    """DeepSeek配置"""
    model_config = SettingsConfigDict(env_prefix="DEEPSEEK_", extra="ignore")

    api_key: str = Field(default="", description="API密钥")
    base_url: str = Field(default="https://api.deepseek.com", description="API基础URL")
    model: str = Field(default="deepseek-chat", description="模型名称")
    timeout: float = Field(default=60.0, description="超时时间")


class QwenSettings(BaseSettings):
    """通义千问配置"""
    model_config = SettingsConfigDict(env_prefix="QWEN_", extra="ignore")

    api_key: str = Field(default="", description="DashScope API密钥")
    base_url: str = Field(
        default="https://dashscope.aliyuncs.com/compatible-mode/v1",
        description="兼容模式API地址",
    )
    model: str = Field(default="qwen-plus", description="模型名称")
    timeout: float = Field(default=60.0, description="超时时间")


class QianfanSettings(BaseSettings):
    """百度千帆配置"""
    model_config = SettingsConfigDict(env_prefix="QIANFAN_", extra="ignore")

    api_key: str = Field(default="", description="API密钥")
    app_id: str = Field(default="", description="应用ID")
    base_url: str = Field(default="https://qianfan.baidubce.com/v2", description="API基础URL")
    model: str = Field(default="ernie-4.0-8k", description="模型名称")
    timeout: float = Field(default=60.0, description="超时时间")


class ArkSettings(BaseSettings):
    """火山方舟配置"""
    model_config = SettingsConfigDict(env_prefix="ARK_", extra="ignore")

    api_key: str = Field(default="", description="API密钥")
    base_url: str = Field(default="https://ark.cn-beijing.volces.com/api/v3", description="API基础URL")
    model: str = Field(default="", description="模型名称或推理接入点ID")
    timeout: float = Field(default=600.0, description="超时时间")
    use_responses_api: bool = Field(default=False, description="是否使用Responses API")


class ClaudeSettings(BaseSettings):
    """Claude配置"""
    model_config = SettingsConfigDict(env_prefix="CLAUDE_", extra="ignore")

    api_key: str = Field(default="", description="API密钥")
    base_url: Optional[str] = Field(default=None, description="API基础URL")
    model: str = Field(default="claude-sonnet-4-5", description="模型名称")
    max_tokens: int = Field(default=4096, ge=1, description="最大token数")


class GeminiSettings(BaseSettings):
    """Gemini配置"""
    model_config = SettingsConfigDict(env_prefix="GEMINI_", extra="ignore")

    api_key: str = Field(default="", description="API密钥")
    model: str = Field(default="gemini-2.5-flash", description="模型名称")


class LoggingSettings(BaseSettings):
    """日志配置"""
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO", description="日志级别")
    json_format: bool = Field(default=False, description="是否输出JSON格式")
    file: Optional[str] = Field(default=None, description="日志文件路径")


class Settings(BaseSettings):
    """主配置类"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # 子配置
    milvus: MilvusSettings = Field(default_factory=MilvusSettings)
    elasticsearch: ElasticsearchSettings = Field(default_factory=ElasticsearchSettings)
    deepseek: DeepSeekSettings = Field(default_factory=DeepSeekSettings)
    qwen: QwenSettings = Field(default_factory=QwenSettings)
    qianfan: QianfanSettings = Field(default_factory=QianfanSettings)
    ark: ArkSettings = Field(default_factory=ArkSettings)
    claude: ClaudeSettings = Field(default_factory=ClaudeSettings)
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()


def reload_settings():
    """重新加载配置"""
    get_settings.cache_clear()
    return get_settings()
