from mentorlink.sandbox.executor import CodeExecutor, ExecutionResult
from mentorlink.sandbox.languages import Toolchain, build_toolchains, extract_java_class_name
from mentorlink.sandbox.pool import BUSY_MESSAGE, ExecutionPool

__all__ = [
    "CodeExecutor",
    "ExecutionResult",
    "ExecutionPool",
    "BUSY_MESSAGE",
    "Toolchain",
    "build_toolchains",
    "extract_java_class_name",
]
