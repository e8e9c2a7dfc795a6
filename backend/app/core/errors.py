class PoolExhausted(RuntimeError):
    pass


class DiscoveryError(RuntimeError):
    pass


class ChannelNotFound(RuntimeError):
    pass


class CrawlFailed(RuntimeError):
    pass


class CrawlNotResumable(RuntimeError):
    pass
