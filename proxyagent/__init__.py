from proxyagent.agent import Agent
from proxyagent.agent import Connector
from proxyagent.agent import HttpProxyAgent
from proxyagent.agent import HttpsProxyAgent
from proxyagent.connection import Connection
from proxyagent.exceptions import BadTunnelResponse
from proxyagent.exceptions import ProxyAgentException
from proxyagent.exceptions import ProxyTimeout
from proxyagent.exceptions import TunnelProtocolError
from proxyagent.options import Destination
from proxyagent.options import ProxyRequestOptions
from proxyagent.tunnel import HttpsTunnel
from proxyagent.tunnel import HttpTunnel

__all__ = [
    "Agent",
    "BadTunnelResponse",
    "Connection",
    "Connector",
    "Destination",
    "HttpProxyAgent",
    "HttpsProxyAgent",
    "HttpsTunnel",
    "HttpTunnel",
    "ProxyAgentException",
    "ProxyRequestOptions",
    "ProxyTimeout",
    "TunnelProtocolError",
]
