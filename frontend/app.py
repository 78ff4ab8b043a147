import base64
import json
import os
import uuid

import pandas as pd
import requests
import streamlit as st
import streamlit.components.v1 as components

API = os.getenv("API_URL", "http://127.0.0.1:8000")

st.set_page_config(page_title="Kundli GPT", layout="wide")
st.title("Kundli GPT")
st.caption("Vedic Lagna chart, readings and a spiritual guide")

CHAT_GREETING = "Hari Om. I am your spiritual guide. Ask me about your chart, planetary transits, or spiritual doubts."
DIGNITY_BADGES = {"Exalted": "🟢", "Debilitated": "🔴", "Own Sign": "🔵", "Ordinary": "⚪"}
BAND_COLORS = {"high": "#f59e0b", "medium": "#fbbf24", "low": "#fde68a", "minimal": "#e5e7eb"}


def api_get(path, params=None, timeout=60):
    url = f"{API}{path}"
    r = requests.get(url, params=params or {}, timeout=timeout)
    r.raise_for_status()
    return r


def api_post(path, json_data=None, params=None, timeout=60):
    url = f"{API}{path}"
    r = requests.post(url, json=json_data, params=params or {}, timeout=timeout)
    r.raise_for_status()
    return r


def show_error(e: Exception, context: str = ""):
    detail = ""
    if isinstance(e, requests.HTTPError) and e.response is not None:
        try:
            detail = e.response.json().get("detail", "")
        except ValueError:
            detail = e.response.text
    msg = f"{context}\n{detail or str(e)}".strip()
    st.error(msg)
    with st.expander("Details"):
        st.exception(e)


def new_message(role, text, is_error=False):
    return {"id": uuid.uuid4().hex, "role": role, "text": text, "is_error": is_error}


def reset_selection():
    st.session_state.selection_state = {"kind": "none"}
    st.session_state.selection_detail = None
    # a fresh table key drops any lingering row highlight
    st.session_state.table_version = st.session_state.get("table_version", 0) + 1


def dispatch_selection(event):
    kundli = st.session_state.kundli
    try:
        data = api_post("/chart/selection", json_data={
            "chart": kundli["chart_data"],
            "state": st.session_state.selection_state,
            "event": event,
        }, timeout=15).json()
        st.session_state.selection_state = data["state"]
        st.session_state.selection_detail = data["detail"]
    except Exception as e:
        show_error(e, "Selection error")


def render_grid_svg(grid, detail):
    """Static SVG of the chart with aspect arrows for the current selection."""
    selected_sign = detail["sign_id"] if detail else None
    parts = [
        '<svg viewBox="0 0 100 100" xmlns="http://www.w3.org/2000/svg" '
        'style="width:100%;max-width:420px;font-family:sans-serif">',
        '<defs><marker id="arrow" markerWidth="4" markerHeight="4" refX="3" refY="2" orient="auto">'
        '<path d="M0,0 L4,2 L0,4 z" fill="#dc2626"/></marker></defs>',
    ]
    for cell in grid["cells"]:
        x, y = cell["col"] * 25, cell["row"] * 25
        fill = "#fde68a" if cell["sign_id"] == selected_sign else ("#fffbeb" if cell["is_ascendant"] else "#ffffff")
        parts.append(f'<rect x="{x}" y="{y}" width="25" height="25" fill="{fill}" stroke="#7c2d12" stroke-width="0.3"/>')
        parts.append(f'<text x="{x + 1.5}" y="{y + 4}" font-size="2.6" fill="#9a3412">{cell["abbreviation"]}</text>')
        parts.append(f'<text x="{x + 23.5}" y="{y + 4}" font-size="2.6" text-anchor="end" fill="#9a3412">{cell["house"]}</text>')
        if cell["is_ascendant"]:
            parts.append(f'<text x="{x + 12.5}" y="{y + 4}" font-size="2.4" text-anchor="middle" fill="#b45309">ASC</text>')
        for i, body in enumerate(cell["occupants"]):
            label = body["name"][:2] + (" (R)" if body["is_retrograde"] else "")
            parts.append(f'<text x="{x + 12.5}" y="{y + 10 + i * 3.4}" font-size="3" text-anchor="middle">{label}</text>')
        bar = 22 * cell["strength"] / 100
        parts.append(f'<rect x="{x + 1.5}" y="{y + 22.5}" width="{bar:.2f}" height="0.9" fill="{BAND_COLORS[cell["strength_band"]]}"/>')

    center = grid["center"]
    parts.append('<rect x="25" y="25" width="50" height="50" fill="#fff7ed" stroke="#e7d7c1" stroke-width="0.3"/>')
    parts.append(f'<text x="50" y="47" font-size="4.5" text-anchor="middle" fill="#7c2d12">{center["title"]}</text>')
    parts.append(f'<text x="50" y="53" font-size="2.8" text-anchor="middle" fill="#6b7280">{center["subtitle"]}</text>')
    if not detail:
        parts.append(f'<text x="50" y="58" font-size="2.4" text-anchor="middle" fill="#9ca3af">{center["hint"]}</text>')

    for line in (detail or {}).get("aspect_lines", []):
        parts.append(
            f'<line x1="{line["x1"]}" y1="{line["y1"]}" x2="{line["x2"]}" y2="{line["y2"]}" '
            'stroke="#dc2626" stroke-width="0.5" stroke-dasharray="1.5,1" marker-end="url(#arrow)" opacity="0.8"/>'
        )
    parts.append("</svg>")
    return "".join(parts)


# ---- state ----
if "kundli" not in st.session_state: st.session_state.kundli = None
if "birth" not in st.session_state: st.session_state.birth = None
if "insight" not in st.session_state: st.session_state.insight = None
if "pdf_bytes" not in st.session_state: st.session_state.pdf_bytes = None
if "messages" not in st.session_state: st.session_state.messages = [new_message("model", CHAT_GREETING)]
if "generated_image" not in st.session_state: st.session_state.generated_image = None
if "vision_text" not in st.session_state: st.session_state.vision_text = None
if "selection_state" not in st.session_state: reset_selection()

tabs = st.tabs(["Chart", "Chat", "Vision", "Image"])

# ---- chart ----
with tabs[0]:
    if st.session_state.kundli is None:
        if st.button("✨ Today's cosmic insight"):
            try:
                with st.spinner("Consulting the stars..."):
                    st.session_state.insight = api_get("/insight", timeout=30).json()["text"]
            except Exception as e:
                show_error(e, "Insight error")
        if st.session_state.insight:
            st.info(f'"{st.session_state.insight}"')

        with st.form("birth_form"):
            name = st.text_input("Name")
            c1, c2 = st.columns(2)
            birth_date = c1.date_input("Date of birth", value=None, min_value=pd.Timestamp("1900-01-01"), format="YYYY-MM-DD")
            birth_time = c2.time_input("Time of birth", value=None, step=60)
            birth_place = st.text_input("Place of birth", placeholder="City, Country")
            question = st.text_area("Your question (optional)", placeholder="General Guidance")
            submitted = st.form_submit_button("Generate Kundli")

        if submitted:
            if not (name.strip() and birth_date and birth_time and birth_place.strip()):
                st.warning("Please fill in name, date, time and place of birth.")
            else:
                birth = {
                    "name": name,
                    "birth_date": birth_date.isoformat(),
                    "birth_time": birth_time.strftime("%H:%M"),
                    "birth_place": birth_place,
                    "question": question or None,
                }
                prog = st.progress(0, text="Calculating planetary positions...")
                try:
                    with st.spinner("Casting the chart..."):
                        prog.progress(20, text="Calling /kundli")
                        st.session_state.kundli = api_post("/kundli", json_data=birth, timeout=180).json()
                        st.session_state.birth = birth
                        prog.progress(100, text="Done")
                except Exception as e:
                    prog.empty()
                    show_error(e, "Kundli error")
                if st.session_state.kundli is not None:
                    reset_selection()
                    st.rerun()
    else:
        kundli = st.session_state.kundli
        chart = kundli["chart_data"]
        grid = kundli["grid"]
        detail = st.session_state.selection_detail

        m1, m2, m3 = st.columns(3)
        m1.metric("Ascendant (Lagna)", grid["ascendant"]["sign_name"] or str(grid["ascendant"]["sign_id"]))
        m2.metric("Moon Sign (Rashi)", chart.get("rashi") or "-")
        m3.metric("Day of Birth", chart.get("day") or "-")

        left, right = st.columns([3, 2])
        with left:
            st.subheader("Lagna Chart")
            components.html(render_grid_svg(grid, detail), height=440)

            cells_by_pos = {(c["row"], c["col"]): c for c in grid["cells"]}
            for row in range(4):
                cols = st.columns(4)
                for col in range(4):
                    cell = cells_by_pos.get((row, col))
                    if cell is None:
                        continue
                    occupants = " ".join(b["name"][:2] for b in cell["occupants"])
                    label = f'{cell["abbreviation"]} · H{cell["house"]}' + (f" · {occupants}" if occupants else "")
                    if cols[col].button(label, key=f"cell_{cell['sign_id']}", use_container_width=True):
                        dispatch_selection({"type": "cell", "sign_id": cell["sign_id"]})
                        st.rerun()

        with right:
            st.subheader("House Detail")
            if detail:
                st.markdown(f'### House {detail["house"]} · {detail["sign_name"]}')
                st.caption(f'Ruler: {detail["ruler"]}')
                st.write(detail["house_signification"])
                if not detail["bodies"]:
                    st.info("No planets occupy this house.")
                for body in detail["bodies"]:
                    with st.container(border=True):
                        retro = " (R)" if body["is_retrograde"] else ""
                        st.markdown(f'**{body["name"]}{retro}** {DIGNITY_BADGES.get(body["dignity"], "")} {body["dignity"]}')
                        st.caption(body["signification"])
                        houses = ", ".join(str(h) for h in body["aspected_houses"]) or "-"
                        st.write(f"Aspects houses: {houses}")
                        aspected = [b["name"] for b in body["aspected_bodies"]]
                        if aspected:
                            st.write("Influences: " + ", ".join(aspected))
                if st.button("Close", key="dismiss_selection"):
                    dispatch_selection({"type": "dismiss"})
                    st.rerun()
            else:
                st.info("Select a house on the chart or a planet in the table.")

        st.subheader("Planetary Positions")
        rows = []
        for body in chart["planets"]:
            rows.append({
                "Planet": body["name"],
                "Sign": next((c["sign_name"] for c in grid["cells"] if c["sign_id"] == body["sign_id"]), body["sign_id"]),
                "House": body["house"],
                "Retro": bool(body["is_retro"]),
            })
        df = pd.DataFrame(rows)
        table = st.dataframe(
            df,
            use_container_width=True,
            hide_index=True,
            on_select="rerun",
            selection_mode="single-row",
            key=f"positions_table_{st.session_state.get('table_version', 0)}",
        )
        selected_rows = table.selection.rows if table is not None else []
        if selected_rows:
            dispatch_selection({"type": "body_row", "body_index": int(selected_rows[0])})
            st.session_state.table_version = st.session_state.get("table_version", 0) + 1
            st.rerun()

        st.divider()
        st.subheader("Reading")
        st.markdown(kundli["markdown"])

        c1, c2 = st.columns(2)
        with c1:
            if st.button("Build PDF"):
                try:
                    with st.spinner("Building PDF..."):
                        r = api_post("/kundli/pdf", json_data={
                            "name": (st.session_state.birth or {}).get("name", ""),
                            "markdown": kundli["markdown"],
                            "chart_data": chart,
                        }, timeout=120)
                        st.session_state.pdf_bytes = r.content
                    st.success("PDF generated")
                except Exception as e:
                    show_error(e, "PDF error")
            if st.session_state.pdf_bytes:
                st.download_button("Download PDF", data=st.session_state.pdf_bytes,
                                   file_name="Kundli_GPT_Reading.pdf", mime="application/pdf")
        with c2:
            if st.button("New Reading"):
                st.session_state.kundli = None
                st.session_state.pdf_bytes = None
                reset_selection()
                st.rerun()

# ---- chat ----
with tabs[1]:
    use_search = st.toggle("Search the web for transits and festivals", value=False)
    for msg in st.session_state.messages:
        with st.chat_message("assistant" if msg["role"] == "model" else "user"):
            if msg["is_error"]:
                st.error(msg["text"])
            else:
                st.markdown(msg["text"])

    prompt = st.chat_input("Ask the oracle...")
    if prompt:
        history = list(st.session_state.messages)
        st.session_state.messages.append(new_message("user", prompt))
        try:
            with st.spinner("Meditating on your question..."):
                reply = api_post("/chat", json_data={
                    "history": history,
                    "message": prompt,
                    "use_search": use_search,
                }, timeout=120).json()
            st.session_state.messages.append(new_message("model", reply["text"]))
        except Exception as e:
            st.session_state.messages.append(new_message("model", "The cosmic connection is weak. Please try again.", is_error=True))
            show_error(e, "Chat error")
        st.rerun()

# ---- vision ----
with tabs[2]:
    st.write("Upload a palm or face photo for a Samudrika Shastra reading.")
    upload = st.file_uploader("Image", type=["png", "jpg", "jpeg", "webp"])
    if upload is not None:
        st.image(upload, width=320)
        if st.button("Analyse"):
            encoded = base64.b64encode(upload.getvalue()).decode("ascii")
            data_url = f"data:{upload.type or 'image/jpeg'};base64,{encoded}"
            try:
                with st.spinner("Reading the lines..."):
                    st.session_state.vision_text = api_post("/image/analyze", json_data={"image": data_url}, timeout=120).json()["text"]
            except Exception as e:
                show_error(e, "Vision error")
    if st.session_state.vision_text:
        st.markdown(st.session_state.vision_text)

# ---- image ----
with tabs[3]:
    image_prompt = st.text_area("Describe a spiritual image", placeholder="Lord Shiva meditating under a crescent moon")
    size = st.radio("Size", ["1K", "2K", "4K"], horizontal=True)
    if st.button("Generate Image"):
        if not image_prompt.strip():
            st.warning("Please enter a prompt.")
        else:
            try:
                with st.spinner("Manifesting..."):
                    st.session_state.generated_image = api_post(
                        "/image/generate", json_data={"prompt": image_prompt, "size": size}, timeout=180
                    ).json()["image"]
            except Exception as e:
                show_error(e, "Image error")
    if st.session_state.generated_image:
        _, _, b64 = st.session_state.generated_image.partition(",")
        image_bytes = base64.b64decode(b64)
        st.image(image_bytes)
        st.download_button("Download Image", data=image_bytes, file_name="kundli_gpt_image.png", mime="image/png")

with st.expander("Raw JSON"):
    st.code(json.dumps(st.session_state.kundli or {}, ensure_ascii=False, indent=2), language="json")
