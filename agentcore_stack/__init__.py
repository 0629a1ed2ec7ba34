"""AgentCore stack tooling.

Turns a declarative stack definition into an ordered, validated resource
graph, renders it as CloudFormation and drives deployment.
"""

__version__ = "0.1.0"
