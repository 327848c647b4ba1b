"""HTTP surface of the gemini wrapper."""
