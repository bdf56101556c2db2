"""ragchat - conversational retrieval-augmented generation over web and local documents."""

__version__ = "0.1.0"
