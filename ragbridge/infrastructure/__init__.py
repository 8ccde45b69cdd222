# Infrastructure Layer - 基础设施层
