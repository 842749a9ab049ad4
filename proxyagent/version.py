VERSION = "1.0.0"
PROXYAGENT = "proxyagent " + VERSION
