# providers/errors.py


class ConfigurationError(ValueError):
    """缺少 API Key / 凭证等配置，必须在任何网络请求之前抛出"""


class ProviderError(RuntimeError):
    """供应商返回非成功终态（非 2xx、code != 0、任务失败、响应结构异常）"""

    def __init__(self, message: str, provider: str = "", status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """异步任务轮询超出预算"""
