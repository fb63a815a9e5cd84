"""WhatsApp bridge administration CLI."""
