"""Cross-cutting helpers: logging and tracing."""
