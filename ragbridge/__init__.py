# ragbridge - 向量数据库与大模型组件适配层
__version__ = "0.1.0"
