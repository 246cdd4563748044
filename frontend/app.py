from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

# app.py
import datetime as dt
import logging

import streamlit as st
from streamlit_drawable_canvas import st_canvas

from expense_common.formatting import format_eur, parse_iso_date
from expense_form import (
    AttachmentCategory,
    FileRef,
    FormStore,
    SubmissionController,
    SubmissionInProgressError,
)
from expense_form.config import KILOMETRIC_RATE, load_settings
from expense_form.errors import InvalidSignatureFile
from expense_form.signature import canvas_signature_png, render_typed_signature
from expense_form.state import PAYMENT_METHODS, SIGNATURE_IMAGE_TYPES
from expense_form.totals import compute_totals

logging.basicConfig(level=logging.INFO, format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s")

SETTINGS = load_settings()

st.set_page_config(page_title=f"Remboursement de frais - {SETTINGS.org_short_name}", layout="centered")


def _remember_download(filename: str, document: bytes) -> None:
    st.session_state["download"] = (filename, document)


if "store" not in st.session_state:
    st.session_state.store = FormStore()
if "controller" not in st.session_state:
    st.session_state.controller = SubmissionController(SETTINGS, on_download=_remember_download)
st.session_state.setdefault("errors", [])
st.session_state.setdefault("download", None)
st.session_state.setdefault("notice", None)
st.session_state.setdefault("submitting", False)

store: FormStore = st.session_state.store
controller: SubmissionController = st.session_state.controller
form = store.state


def _file_refs(uploaded) -> list:
    return [FileRef(f.name, f.getvalue(), f.type or "application/octet-stream") for f in uploaded or []]


def _date_input(label: str, attr: str, key: str):
    current = parse_iso_date(getattr(form, attr))
    value = st.date_input(label, value=current, format="DD/MM/YYYY", key=key)
    store.set_field(attr, value.isoformat() if isinstance(value, dt.date) else "")


st.title("Demande de remboursement de frais")
st.caption(SETTINGS.org_name)

# ------------- Requester -------------
st.subheader("Informations personnelles")
c1, c2 = st.columns(2)
with c1:
    store.set_field("first_name", st.text_input("Prénom *", value=form.first_name, key="first_name"))
    store.set_field("role", st.text_input("Rôle/Fonction *", value=form.role, key="role"))
    _date_input("Date *", "date", "date")
with c2:
    store.set_field("last_name", st.text_input("Nom *", value=form.last_name, key="last_name"))
    store.set_field("place", st.text_input("Lieu *", value=form.place, key="place"))
    _date_input("Date de la demande", "request_date", "request_date")

store.set_field("subject", st.text_input("Objet de la demande *", value=form.subject, key="subject"))
store.set_field("motivation", st.text_area("Motivation *", value=form.motivation, key="motivation"))
method_index = PAYMENT_METHODS.index(form.payment_method) if form.payment_method in PAYMENT_METHODS else 0
store.set_field(
    "payment_method",
    st.selectbox("Mode de paiement", PAYMENT_METHODS, index=method_index, key="payment_method"),
)

# ------------- Expenses -------------
st.subheader("Dépenses")
for n, line in enumerate(list(form.expenses), start=1):
    with st.container(border=True):
        st.markdown(f"**Dépense {n}**")
        cols = st.columns([3, 2, 1])
        nature = cols[0].text_input("Nature", value=line.nature, key=f"nature-{line.id}")
        amount = cols[1].text_input("Montant (€)", value=line.amount, key=f"amount-{line.id}")
        store.update_expense(line.id, nature=nature, amount=amount)
        if cols[2].button("Supprimer", key=f"remove-{line.id}"):
            store.remove_expense(line.id)
            st.rerun()
        receipts = st.file_uploader(
            "Justificatifs", accept_multiple_files=True, key=f"receipts-{line.id}"
        )
        store.set_expense_attachments(line.id, _file_refs(receipts))

if st.button("Ajouter une dépense"):
    store.add_expense()
    st.rerun()

# ------------- Mileage -------------
st.subheader("Indemnités kilométriques")
k1, k2 = st.columns(2)
store.set_kilometers(k1.text_input("Kilomètres parcourus", value=form.kilometers, key="kilometers"))
store.set_rental_vehicle(k2.checkbox("Véhicule de location", value=form.rental_vehicle, key="rental_vehicle"))
st.caption(f"Barème : {str(KILOMETRIC_RATE).replace('.', ',')} € / km")

# ------------- Attachments -------------
st.subheader("Pièces justificatives")
for category in AttachmentCategory:
    st.markdown(f"**{category.label}**")
    for group in list(form.groups(category)):
        g1, g2 = st.columns([5, 1])
        uploaded = g1.file_uploader(
            category.label,
            accept_multiple_files=True,
            key=f"group-{group.id}",
            label_visibility="collapsed",
        )
        store.set_group_files(category, group.id, _file_refs(uploaded))
        if g2.button("Retirer", key=f"remove-group-{group.id}"):
            store.remove_group(category, group.id)
            st.rerun()
    if st.button("Ajouter un groupe", key=f"add-group-{category.value}"):
        store.add_group(category)
        st.rerun()

# ------------- Signature -------------
st.subheader("Signature")
mode = st.radio(
    "Mode de signature", ["Dessiner", "Saisir", "Importer une image"], horizontal=True, key="signature_mode"
)
if st.session_state.get("last_signature_mode") != mode:
    # a signature never outlives the mode it was made in
    store.clear_signature()
    st.session_state["last_signature_mode"] = mode

if mode == "Dessiner":
    drawn = st_canvas(
        stroke_width=3,
        stroke_color="#14143c",
        background_color="#ffffff",
        height=150,
        width=600,
        drawing_mode="freedraw",
        key="signature_canvas",
    )
    png = canvas_signature_png(drawn.image_data if drawn is not None else None)
    if png:
        store.set_drawn_signature(png)
    else:
        store.clear_signature()
elif mode == "Saisir":
    typed = st.text_input("Tapez votre nom pour signer", key="signature_text")
    if typed.strip():
        png = render_typed_signature(typed)
        store.set_drawn_signature(png)
        st.image(png, width=300)
    else:
        store.clear_signature()
else:
    upload = st.file_uploader(
        "Image de signature (PNG, JPEG, GIF, WebP, 5 Mo max)",
        type=["png", "jpg", "jpeg", "gif", "webp"],
        key="signature_file",
    )
    if upload is not None:
        try:
            store.set_uploaded_signature(FileRef(upload.name, upload.getvalue(), upload.type or ""))
        except InvalidSignatureFile as e:
            store.clear_signature()
            st.error(str(e))
        else:
            if upload.type in SIGNATURE_IMAGE_TYPES:
                st.image(upload.getvalue(), width=300)
    else:
        store.clear_signature()

# ------------- Totals & submit -------------
totals = compute_totals(form)
st.divider()
t1, t2, t3 = st.columns(3)
t1.metric("Total dépenses", format_eur(totals.expenses))
t2.metric("Kilométrique", format_eur(totals.kilometric))
t3.metric("Montant total", format_eur(totals.grand))


def _start_submit() -> None:
    st.session_state["submitting"] = True


st.button(
    "Envoyer la demande",
    type="primary",
    disabled=st.session_state["submitting"] or controller.busy,
    on_click=_start_submit,
)

if st.session_state["submitting"]:
    st.session_state["download"] = None
    st.session_state["notice"] = None
    try:
        with st.spinner("Génération du PDF et envoi en cours…"):
            outcome = controller.submit(store.snapshot())
    except SubmissionInProgressError as e:
        st.session_state["notice"] = ("warning", str(e))
    else:
        st.session_state["errors"] = [(err.field, err.message) for err in outcome.errors()]
        if outcome.ok:
            st.session_state["notice"] = ("success", "Votre demande a été envoyée. Le PDF est prêt à être téléchargé.")
    finally:
        st.session_state["submitting"] = False
    st.rerun()

notice = st.session_state.get("notice")
if notice:
    kind, text = notice
    (st.success if kind == "success" else st.warning)(text)

for field, message in st.session_state["errors"]:
    st.error(f"{field} : {message}")

download = st.session_state.get("download")
if download:
    filename, document = download
    st.download_button("Télécharger le PDF", data=document, file_name=filename, mime="application/pdf")
