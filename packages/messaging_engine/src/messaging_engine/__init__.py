"""
Relaydesk Messaging Engine

Tenant credit ledger, session-window enforcement, webhook ingestion with
keyword automation, and realtime fan-out for WhatsApp and Messenger.
"""
