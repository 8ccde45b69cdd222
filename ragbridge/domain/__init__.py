# Domain Layer - 领域层
