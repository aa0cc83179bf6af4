class ProbeboxError(Exception):
    pass


class ConfigurationError(ProbeboxError):
    pass


class LaunchError(ProbeboxError):
    pass
