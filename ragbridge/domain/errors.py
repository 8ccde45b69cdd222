"""
Errors - 组件异常定义

所有适配器抛出的异常都继承自ComponentError，调用方可以统一捕获
"""

from typing import Optional


class ComponentError(RuntimeError):
    """组件异常基类"""

    def __init__(self, message: str, *, component: Optional[str] = None):
        self.component = component
        super().__init__(f"[{component}] {message}" if component else message)


class ConfigError(ComponentError, ValueError):
    """配置非法或缺失"""


class EmbeddingError(ComponentError):
    """向量化失败（缺少嵌入器、嵌入器报错、数量不匹配）"""


class ConversionError(ComponentError):
    """文档与后端数据之间转换失败"""


class BackendError(ComponentError):
    """后端SDK调用失败"""


class ModelResponseError(ComponentError):
    """模型返回了无法使用的响应"""
