"""Gmail API access: auth, client, sync and deletion."""
