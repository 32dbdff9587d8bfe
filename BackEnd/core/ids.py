import secrets


def create_id(prefix=None):
	"""Return a short random id, optionally prefixed ('sess_k3j9…')."""
	base = secrets.token_hex(5)
	return f"{prefix}_{base}" if prefix else base
