"""Data Protect Toolkit deployer — plan and apply secure GCP projects."""

__version__ = "0.1.0"
