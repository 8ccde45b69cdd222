# Application Layer - 应用层
