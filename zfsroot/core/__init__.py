"""核心层：数据模型、阶段状态机、构建状态存储、清理/回滚栈"""
