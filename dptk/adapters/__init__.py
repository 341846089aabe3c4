"""
Backend adapters — the only code that runs gcloud, terraform and kubectl.

    from dptk.adapters.registry import default_backends, mock_backends
"""
