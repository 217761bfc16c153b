# /regdesk/utils/metrics.py

from prometheus_client import Counter, Histogram, Gauge

# This file defines all Prometheus metrics used for application monitoring.
# Centralizing them here makes them easy to find and manage.

# Conversation Metrics
message_counter = Counter('regdesk_inbound_messages_total', 'Inbound messages processed', ['status'])
transition_counter = Counter('regdesk_flow_transitions_total', 'Flow engine transitions', ['node_kind', 'outcome'])
active_sessions_gauge = Gauge('regdesk_active_sessions', 'Sessions currently held by the session store')
sessions_expired_counter = Counter('regdesk_sessions_expired_total', 'Sessions expired by the idle sweep')

# Delivery Metrics
delivery_attempts_counter = Counter('regdesk_delivery_attempts_total', 'Outbound send attempts', ['channel', 'status'])
template_fallback_counter = Counter('regdesk_template_fallbacks_total', 'Template sends that fell back to plain text')
delivery_status_counter = Counter('regdesk_delivery_status_callbacks_total', 'Delivery status callbacks', ['status'])

# Submission Metrics
submission_counter = Counter('regdesk_submissions_total', 'Downstream submissions', ['service_type', 'outcome'])
submission_latency_histogram = Histogram('regdesk_submission_seconds', 'Downstream submission latency in seconds', ['service_type'])

# Security & Performance Metrics
webhook_signature_counter = Counter('regdesk_webhook_signature_verifications_total', 'Webhook signature verifications', ['status'])
response_time_histogram = Histogram('regdesk_response_time_seconds', 'Response time in seconds', ['endpoint'])
session_store_operations = Counter('regdesk_session_store_operations_total', 'Session store operations', ['operation', 'status'])
