"""Gradio application for browsing, editing and de-duplicating the library."""

import logging

import gradio as gr

from lightbooru.api import Library
from lightbooru.config import DUPLICATE_THRESHOLD, HASH_ALGORITHM, HASH_ALGORITHMS
from lightbooru.errors import LightbooruError, OverlayParseError
from lightbooru.index.query import Page
from lightbooru.library.overlay import load_overlay
from lightbooru.models import EditDelta
from lightbooru.paths import overlay_path_for
from lightbooru.search.query import (
    ANY_RATING,
    RATINGS,
    SORT_CHOICES,
    build_filter,
    describe,
    duplicate_gallery,
    duplicate_summary,
    gallery_items,
    parse_tag_input,
    split_terms,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 40

SENSITIVE_SOURCE = "from source"
SENSITIVE_CHOICES = (SENSITIVE_SOURCE, "safe", "sensitive")

CUSTOM_CSS = """
.full-height-gallery .grid-wrap {
    overflow-y: visible !important;
    max-height: none !important;
}
.full-height-gallery .grid-container {
    grid-template-rows: none !important;
}
"""


def create_app(library: Library | None = None) -> gr.Blocks:
    """Create and return the Gradio Blocks app."""
    library = library or Library()
    library.snapshot()

    def _platforms() -> list[str]:
        return sorted(library.snapshot().platform_index)

    def _page(search_args: dict, offset: int):
        return library.search(
            search_args["terms"],
            use_aliases=search_args["use_aliases"],
            filter=build_filter(
                search_args["tags"], search_args["exclude"], search_args["platforms"], search_args["rating"]
            ),
            sort=SORT_CHOICES.get(search_args["sort"]),
            page=Page(offset, PAGE_SIZE),
        )

    # ── Search tab handlers ──────────────────────────────────────────

    def do_search(terms, tags, exclude, platforms, rating, sort_label, use_aliases) -> tuple:
        search_args = {
            "terms": split_terms(terms),
            "tags": tags,
            "exclude": exclude,
            "platforms": platforms or [],
            "rating": rating or ANY_RATING,
            "sort": sort_label,
            "use_aliases": bool(use_aliases),
        }
        found = _page(search_args, 0)
        items = gallery_items(found.result.items)
        ids = [record.item_id for record in found.result.items]
        info = f"Found {found.result.total_count} items."
        if found.expanded_terms != found.terms:
            info += f" Terms expanded to: {', '.join(found.expanded_terms)}."
        has_more = len(ids) < found.result.total_count
        return items, info, search_args, ids, gr.update(visible=has_more)

    def do_load_more(search_args: dict | None, ids: list) -> tuple:
        if not search_args:
            return gr.update(), "No active search.", ids, gr.update(visible=False)
        found = _page(search_args, len(ids))
        ids = ids + [record.item_id for record in found.result.items]
        by_id = library.snapshot().by_id
        records = [by_id[i] for i in ids if i in by_id]
        has_more = len(ids) < found.result.total_count
        return (
            gallery_items(records),
            f"Showing {len(ids)} of {found.result.total_count} items.",
            ids,
            gr.update(visible=has_more),
        )

    def _detail_outputs(item_id: str | None) -> tuple:
        if item_id is None:
            hidden = gr.update(visible=False)
            return hidden, hidden, gr.update(value=""), gr.update(value=SENSITIVE_SOURCE), gr.update(value=""), None
        try:
            record = library.get_item(item_id)
        except LightbooruError as exc:
            return (
                gr.update(visible=False),
                gr.update(value=str(exc), visible=True),
                gr.update(),
                gr.update(),
                gr.update(),
                None,
            )
        sensitive = SENSITIVE_SOURCE
        try:
            overlay = load_overlay(overlay_path_for(record.item.file_path))
        except OverlayParseError as exc:
            logger.warning("%s", exc)
            overlay = None
        if overlay is not None and overlay.sensitive_override is not None:
            sensitive = "sensitive" if overlay.sensitive_override else "safe"
        return (
            gr.update(value=str(record.item.file_path), visible=True),
            gr.update(value=describe(record), visible=True),
            gr.update(value=", ".join(sorted(record.tags))),
            gr.update(value=sensitive),
            gr.update(value=record.notes or ""),
            record.item_id,
        )

    def on_gallery_select(ids: list, evt: gr.SelectData) -> tuple:
        index = evt.index
        if index is None or index >= len(ids):
            return _detail_outputs(None)
        return _detail_outputs(ids[index])

    def do_save(item_id: str | None, tags_text: str, sensitive: str, notes: str) -> tuple:
        if item_id is None:
            return ("Select an item first.",) + _detail_outputs(None)
        delta = EditDelta(
            set_tags=parse_tag_input(tags_text),
            sensitive=None if sensitive == SENSITIVE_SOURCE else sensitive == "sensitive",
            clear_sensitive=sensitive == SENSITIVE_SOURCE,
            notes=notes or "",
        )
        try:
            library.apply_edit(item_id, delta)
            library.rebuild()
        except LightbooruError as exc:
            return (f"Edit failed: {exc}",) + _detail_outputs(item_id)
        return ("Saved.",) + _detail_outputs(item_id)

    def do_rebuild() -> tuple:
        snapshot = library.rebuild()
        report = snapshot.report
        status = f"Indexed {len(snapshot)} items"
        if report.issues:
            status += f" with {len(report)} issues"
        return status + ".", gr.update(choices=_platforms())

    # ── Duplicates tab handlers ──────────────────────────────────────

    def do_find_duplicates(threshold, algorithm, skip_same_dir) -> tuple:
        try:
            report = library.find_duplicates(int(threshold), algorithm=algorithm, skip_same_dir=bool(skip_same_dir))
        except LightbooruError as exc:
            return [], f"Duplicate search failed: {exc}"
        return duplicate_gallery(library.snapshot(), report), duplicate_summary(report)

    with gr.Blocks(title="LightBooru", css=CUSTOM_CSS) as app:
        gr.Markdown("# LightBooru")

        with gr.Tabs():
            # ── Search tab ───────────────────────────────────────────
            with gr.TabItem("Search", id=0):
                with gr.Row():
                    terms_input = gr.Textbox(label="Search", placeholder="tags, author or text", scale=3)
                    use_aliases = gr.Checkbox(label="Use aliases", value=True)
                    search_btn = gr.Button("Search", variant="primary")
                with gr.Row():
                    tags_input = gr.Textbox(label="Require tags", placeholder="tag1, tag2")
                    exclude_input = gr.Textbox(label="Exclude tags")
                    platform_filter = gr.Dropdown(
                        choices=_platforms(), multiselect=True, label="Platforms", value=[]
                    )
                    rating_filter = gr.Radio(list(RATINGS), value=ANY_RATING, label="Rating")
                    sort_choice = gr.Dropdown(list(SORT_CHOICES), value="Newest", label="Sort")
                with gr.Row():
                    rebuild_btn = gr.Button("Rescan library")
                    status = gr.Markdown("")

                with gr.Row():
                    with gr.Column(scale=3):
                        gallery = gr.Gallery(
                            label="Results", columns=5, height="auto",
                            allow_preview=False, elem_classes=["full-height-gallery"],
                        )
                        info = gr.Markdown("")
                        load_more_btn = gr.Button("Load More", visible=False)
                    with gr.Column(scale=2):
                        preview = gr.Image(label="Preview", type="filepath", visible=False, interactive=False)
                        details = gr.Markdown("", visible=False)
                        edit_tags = gr.Textbox(label="Tags", lines=3)
                        edit_sensitive = gr.Radio(list(SENSITIVE_CHOICES), value=SENSITIVE_SOURCE, label="Sensitive")
                        edit_notes = gr.Textbox(label="Notes", lines=2)
                        save_btn = gr.Button("Save edits")

                search_state = gr.State(None)
                ids_state = gr.State([])
                selected_state = gr.State(None)

                detail_outputs = [preview, details, edit_tags, edit_sensitive, edit_notes, selected_state]
                search_inputs = [
                    terms_input, tags_input, exclude_input, platform_filter,
                    rating_filter, sort_choice, use_aliases,
                ]
                search_outputs = [gallery, info, search_state, ids_state, load_more_btn]

                search_btn.click(fn=do_search, inputs=search_inputs, outputs=search_outputs)
                terms_input.submit(fn=do_search, inputs=search_inputs, outputs=search_outputs)
                load_more_btn.click(
                    fn=do_load_more,
                    inputs=[search_state, ids_state],
                    outputs=[gallery, info, ids_state, load_more_btn],
                )
                gallery.select(fn=on_gallery_select, inputs=[ids_state], outputs=detail_outputs)
                save_btn.click(
                    fn=do_save,
                    inputs=[selected_state, edit_tags, edit_sensitive, edit_notes],
                    outputs=[status, *detail_outputs],
                )
                rebuild_btn.click(fn=do_rebuild, outputs=[status, platform_filter])

            # ── Duplicates tab ───────────────────────────────────────
            with gr.TabItem("Duplicates", id=1):
                with gr.Row():
                    threshold = gr.Slider(0, 32, value=DUPLICATE_THRESHOLD, step=1, label="Max distance")
                    algorithm = gr.Dropdown(list(HASH_ALGORITHMS), value=HASH_ALGORITHM, label="Hash")
                    skip_same_dir = gr.Checkbox(label="Ignore pairs in the same folder", value=False)
                    dupes_btn = gr.Button("Find duplicates", variant="primary")
                dupes_info = gr.Markdown("")
                dupes_gallery = gr.Gallery(
                    label="Duplicate groups", columns=5, height="auto",
                    allow_preview=True, elem_classes=["full-height-gallery"],
                )
                dupes_btn.click(
                    fn=do_find_duplicates,
                    inputs=[threshold, algorithm, skip_same_dir],
                    outputs=[dupes_gallery, dupes_info],
                )

    return app
