"""Browser UI for the AI product wizard.

Run the API and the worker first, then:
    streamlit run ui_app.py
"""
from __future__ import annotations

import os
import time

import httpx
import pandas as pd
import streamlit as st

from itp_studio.client.api import StudioClient
from itp_studio.client.wizard import POLL_INTERVAL_S, Wizard, WizardStep, enrich_prompt
from itp_studio.core.errors import StudioError

API_URL = os.getenv("ITP_STUDIO_API_URL", "http://127.0.0.1:8000")

STATUS_BADGES = {"queued": "⏳ queued", "running": "🔄 running", "succeeded": "✅ done", "failed": "❌ failed"}

st.set_page_config(page_title="ITP Studio", page_icon="🎨", layout="wide")


def get_wizard() -> Wizard:
    if "wizard" not in st.session_state:
        st.session_state.wizard = Wizard(StudioClient(API_URL))
    return st.session_state.wizard


def show_error(wizard: Wizard) -> None:
    if wizard.error:
        st.error(wizard.error)


def job_label(job: dict, mockup_index: int) -> str:
    if job["type"] == "mockup":
        template = (job.get("input") or {}).get("template", "")
        return f"Mockup #{mockup_index} ({template.replace('_', ' ')})"
    return job["type"].replace("-", " ").title()


wizard = get_wizard()

st.title("🎨 ITP Studio: AI product wizard")
st.caption(" → ".join(s.value.title() if s != wizard.step else f"**{s.value.title()}**" for s in WizardStep))

if wizard.step == WizardStep.DESCRIBE:
    models = []
    try:
        models = wizard.client.models()["models"]
    except (StudioError, httpx.HTTPError) as exc:
        st.warning(f"Could not reach the API at {API_URL}: {exc}")

    with st.form("describe"):
        prompt = st.text_area("Describe your product idea", height=120)
        col1, col2, col3 = st.columns(3)
        with col1:
            category = st.selectbox("Category", ["shirts", "hoodies", "tumblers", "dtf-transfers"])
            image_style = st.selectbox("Image style", ["semi-realistic", "realistic", "cartoon"])
            background = st.selectbox("Background", ["transparent", "studio"])
        with col2:
            product_type = st.selectbox("Product type", ["tshirt", "hoodie", "tank"])
            shirt_color = st.selectbox("Shirt color", ["black", "white", "gray", "color"])
            print_placement = st.selectbox(
                "Print placement", ["front-center", "left-pocket", "back-only", "pocket-front-back-full"]
            )
        with col3:
            print_style = st.selectbox("Print style", ["clean", "halftone", "grunge"])
            price = st.number_input("Target price ($, 0 = default)", min_value=0.0, value=0.0, step=1.0)
            model_ids = st.multiselect("Models", [m["id"] for m in models], default=[m["id"] for m in models])
        target_audience = st.text_input("Target audience (optional)")
        primary_colors = st.text_input("Primary colors (optional)")
        design_style = st.text_input("Design style (optional)")
        submitted = st.form_submit_button("✨ Create product", use_container_width=True)

    if submitted:
        request = {
            "prompt": enrich_prompt(prompt, target_audience, primary_colors, design_style, category) if prompt.strip() else "",
            "category": category,
            "image_style": image_style,
            "background": background,
            "product_type": product_type,
            "shirt_color": shirt_color,
            "print_placement": print_placement,
            "print_style": print_style,
            "price_target": int(price * 100) or None,
            "model_ids": model_ids,
        }
        try:
            with st.spinner("Normalizing your idea..."):
                wizard.submit(request)
            st.rerun()
        except StudioError:
            pass  # wizard.error is shown below
    show_error(wizard)

elif wizard.step == WizardStep.REVIEW:
    normalized = wizard.normalized
    st.subheader(normalized.get("title", ""))
    st.write(normalized.get("description", ""))
    st.json(
        {
            "category": normalized.get("category_name"),
            "price": f"${normalized.get('suggested_price_cents', 0) / 100:.2f}",
            "tags": normalized.get("tags", []),
            "image_prompt": normalized.get("image_prompt"),
        }
    )
    col1, col2 = st.columns(2)
    if col1.button("🚀 Looks good, generate", use_container_width=True):
        wizard.confirm()
        st.rerun()
    if col2.button("↩️ Start over", use_container_width=True):
        wizard.start_over()
        st.rerun()

elif wizard.step == WizardStep.GENERATE:
    try:
        wizard.refresh()
    except StudioError as exc:
        st.warning(f"Status refresh failed: {exc.message}")

    st.subheader(wizard.product.get("name", ""))
    mockup_index = 0
    rows = []
    for job in reversed(wizard.jobs):
        if job["type"] == "mockup":
            mockup_index += 1
        rows.append(
            {
                "job": job["id"],
                "step": job_label(job, mockup_index),
                "status": STATUS_BADGES.get(job["status"], job["status"]),
                "attempt": job["attempt"],
                "error": job.get("error") or "",
            }
        )
    if rows:
        st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)

    for kind, title in (("source", "Generated"), ("nobg", "Background removed"), ("mockup", "Mockups")):
        assets = wizard.assets_of(kind)
        if assets:
            st.markdown(f"**{title}**")
            st.image([a["url"] for a in assets], width=240)

    candidates = wizard.assets_of("source")
    if len(candidates) > 1:
        st.caption("Several models answered. Pick one image; the others are deleted and its mockups start.")
        for col, asset in zip(st.columns(len(candidates)), candidates):
            label = (asset.get("metadata") or {}).get("model_name") or f"Image {asset['id']}"
            if col.button(f"⭐ Use {label}", key=f"select-{asset['id']}", use_container_width=True):
                wizard.select_image(asset["id"])

    col1, col2, col3, col4 = st.columns(4)
    if col1.button("✂️ Remove background", use_container_width=True):
        wizard.remove_background()
    if col2.button("⏭️ Skip to mockups", use_container_width=True):
        wizard.skip_to_mockups()
    if col3.button("👕 Create mockups", use_container_width=True):
        wizard.create_mockups()
    if col4.button("🔁 Regenerate", use_container_width=True):
        wizard.regenerate()
    show_error(wizard)

    if wizard.mockups_ready() and st.button("🎉 Continue to approval", type="primary", use_container_width=True):
        wizard.finish()
        st.rerun()

    # keep refreshing until the admin moves on
    time.sleep(POLL_INTERVAL_S)
    st.rerun()

elif wizard.step == WizardStep.SUCCESS:
    st.success(f"{wizard.product.get('name', 'Product')} is ready")
    st.image([a["url"] for a in wizard.assets_of("mockup")], width=320)
    col1, col2 = st.columns(2)
    if col1.button("✅ Approve and publish", type="primary", use_container_width=True):
        product = wizard.approve()
        if product:
            st.balloons()
            st.json({"id": product["id"], "slug": product["slug"], "status": product["status"], "images": product["images"]})
    if col2.button("➕ Create another", use_container_width=True):
        wizard.start_over()
        st.rerun()
    show_error(wizard)
