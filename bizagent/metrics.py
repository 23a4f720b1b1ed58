"""Prometheus metrics, exposed on /metrics."""

from prometheus_client import Counter, Histogram

api_requests_total = Counter('api_requests_total', 'Total API requests', ['method', 'endpoint', 'status'])
api_request_duration = Histogram('api_request_duration_seconds', 'API request duration')

agent_messages_total = Counter('agent_messages_total', 'Agent messages by deciding tier', ['tier'])
agent_actions_total = Counter('agent_actions_total', 'Executed agent actions', ['action', 'status'])
llm_calls_total = Counter('llm_calls_total', 'LLM round trips by outcome', ['outcome'])
llm_call_duration = Histogram('llm_call_duration_seconds', 'LLM round trip duration')
tool_calls_total = Counter('agent_tool_calls_total', 'Tool executions', ['tool', 'outcome'])
