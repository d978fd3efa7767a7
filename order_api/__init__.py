"""Order fulfillment service: places and cancels orders across inventory, order storage and shipping events."""
