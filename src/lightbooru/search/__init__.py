"""Library browser UI with Gradio."""


def main() -> None:
    """CLI entry point for the Gradio browser."""
    from lightbooru.api import Library
    from lightbooru.library import setup_logging
    from lightbooru.search.app import create_app

    setup_logging()
    library = Library()
    app = create_app(library)
    app.launch(allowed_paths=[str(root) for root in library.roots])
