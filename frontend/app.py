"""Streamlit frontend for the MedSupply order-management backend."""

from __future__ import annotations

import json
from typing import Any

import altair as alt
import pandas as pd
import requests
import streamlit as st


st.set_page_config(
	page_title="MedSupply OS — DME order management",
	page_icon="🩺",
	layout="wide",
)

st.markdown(
	"""
		<style>
			:root {
				font-size: 16px;
			}
			.block-container {
				padding-top: 1.5rem !important;
				padding-bottom: 3rem !important;
			}
			.section-spacer {
				margin-top: 1.5rem;
				margin-bottom: 1rem;
			}
		</style>
	""",
	unsafe_allow_html=True,
)

PAYERS = ["Medicare", "BCBS", "Aetna"]
STATUSES = ["all", "Draft", "Needs Approval", "Approved", "Docs Ready", "Action Required"]


def _attach_session(kwargs: dict[str, Any]) -> dict[str, Any]:
	session_id = st.session_state.get("session_id")
	if not session_id:
		return kwargs
	params = dict(kwargs.get("params") or {})
	json_payload = kwargs.get("json")
	if isinstance(json_payload, dict):
		payload = dict(json_payload)
		payload.setdefault("session_id", session_id)
		kwargs["json"] = payload
	params.setdefault("session_id", session_id)
	kwargs["params"] = params
	return kwargs


def _error_message(exc: requests.HTTPError) -> str:
	try:
		payload = exc.response.json()
	except ValueError:
		return str(exc)
	detail = payload.get("detail") if isinstance(payload, dict) else payload
	if isinstance(detail, dict) and detail.get("description"):
		return f"{detail.get('message', 'Error')}: {detail['description']}"
	if isinstance(detail, str):
		return detail
	return json.dumps(payload, indent=2)


def request_json(method: str, url: str, **kwargs: Any) -> tuple[dict[str, Any] | None, str | None]:
	kwargs = _attach_session(kwargs)
	try:
		response = requests.request(method, url, timeout=10, **kwargs)
		response.raise_for_status()
		return response.json(), None
	except requests.HTTPError as exc:
		return None, _error_message(exc)
	except requests.RequestException as exc:
		return None, str(exc)


def request_bytes(url: str, **kwargs: Any) -> tuple[bytes | None, str | None]:
	kwargs = _attach_session(kwargs)
	try:
		response = requests.get(url, timeout=30, **kwargs)
		response.raise_for_status()
		return response.content, None
	except requests.HTTPError as exc:
		return None, _error_message(exc)
	except requests.RequestException as exc:
		return None, str(exc)


def format_currency(value: Any) -> str:
	try:
		numeric = float(value)
	except (TypeError, ValueError):
		return "—"
	return f"${numeric:,.2f}"


def ensure_session(api_base: str) -> None:
	if not api_base:
		return
	if st.session_state.get("session_id"):
		return
	resp, err = request_json("POST", f"{api_base}/session/start")
	if err:
		st.sidebar.error(f"Unable to start session: {err}")
		return
	if isinstance(resp, dict) and resp.get("session_id"):
		st.session_state["session_id"] = str(resp.get("session_id"))


def _product_options(products: list[dict[str, Any]]) -> dict[str, str]:
	return {p["id"]: f"{p['name']} ({p['hcpcs']})" for p in products}


def _finish_action(err: str | None) -> None:
	if err:
		st.error(err)
	else:
		st.rerun()


api_base = st.sidebar.text_input("API base URL", value="http://localhost:8080").strip().rstrip("/")

ensure_session(api_base)
current_session_id = st.session_state.get("session_id")
if current_session_id:
	st.sidebar.markdown(f"**Session ID:** `{current_session_id}`")
	if st.sidebar.button("Reset session", help="Discard every change made in this session"):
		_, err = request_json("DELETE", f"{api_base}/session/{current_session_id}")
		if err:
			st.sidebar.error(err)
		st.session_state.pop("session_id", None)
		st.rerun()

st.session_state.setdefault("selected_order_id", None)
st.session_state.setdefault("continue_id", None)
st.session_state.setdefault("form_lines", 1)
st.session_state.setdefault("fee_prefill", None)

products_resp, _ = request_json("GET", f"{api_base}/products")
all_products: list[dict[str, Any]] = (products_resp or {}).get("products", [])

orders_tab, new_order_tab, products_tab, fee_tab = st.tabs(["Orders", "New Order", "Products", "Fee Schedules"])


def render_order_detail(order_id: str) -> None:
	detail, err = request_json("GET", f"{api_base}/orders/{order_id}")
	if err or not detail:
		st.error(err or "Order not found")
		return
	order = detail["order"]
	totals = detail["totals"]
	actions = detail["actions"]
	flagged = set(detail.get("items_requiring_approval") or [])

	st.subheader(f"{order['id']} — {order['patient']}")
	st.caption(f"Status: **{order['status']}** · Payer: {order['payer']} · Updated {order['updated']}")
	if order.get("rejection_reason"):
		st.error(f"Rejected: {order['rejection_reason']}")

	cols = st.columns(4)
	cols[0].metric("Total allowed", format_currency(totals["total_allowed"]))
	cols[1].metric("Insurance pays", format_currency(totals["insurance_pays"]))
	cols[2].metric("Patient share", format_currency(totals["total_patient_share"]))
	cols[3].metric("Margin", f"{totals['margin']:.1f}%")

	rows = [
		{
			"Item": li["product"],
			"HCPCS": li["hcpcs"],
			"Qty": li["qty"],
			"Allowed": format_currency(li["allowed_amount"]),
			"Patient share": format_currency(li["patient_share"]),
			"Needs approval": "⚠️" if li["id"] in flagged else "",
			"CMN": "📏" if li.get("has_measurement") else "",
		}
		for li in order["line_items"]
	]
	st.table(rows)

	action_cols = st.columns(4)
	if "approve" in actions and action_cols[0].button("Approve", key=f"approve_{order_id}"):
		_, err = request_json("POST", f"{api_base}/orders/{order_id}/approve")
		_finish_action(err)
	if "generate_docs" in actions and action_cols[1].button("Generate documents", key=f"docs_{order_id}"):
		_, err = request_json("POST", f"{api_base}/orders/{order_id}/documents/generate")
		_finish_action(err)
	if {"continue", "edit"} & set(actions):
		label = "Continue draft" if "continue" in actions else "Edit and resubmit"
		if action_cols[2].button(label, key=f"continue_{order_id}"):
			st.session_state["continue_id"] = order_id
			st.info("Open the New Order tab to continue this order.")
	if "reject" in actions:
		with st.form(key=f"reject_form_{order_id}"):
			reason = st.text_area("Rejection reason")
			if st.form_submit_button("Reject"):
				_, err = request_json("POST", f"{api_base}/orders/{order_id}/reject", json={"reason": reason})
				_finish_action(err)

	st.markdown("#### Notes")
	for note in order.get("notes", []):
		st.markdown(f"**{note['author']}** · {note['timestamp'][:16]}  \n{note['text']}")
	with st.form(key=f"note_form_{order_id}", clear_on_submit=True):
		text = st.text_input("Add a note")
		if st.form_submit_button("Add note"):
			_, err = request_json("POST", f"{api_base}/orders/{order_id}/notes", json={"text": text})
			_finish_action(err)

	st.markdown("#### Documents")
	docs, err = request_json("GET", f"{api_base}/orders/{order_id}/documents")
	if err:
		st.error(err)
	else:
		for doc in (docs or {}).get("documents", []):
			with st.expander(doc["title"]):
				st.caption(doc["description"])
				for fmt in ("pdf", "docx"):
					content, derr = request_bytes(f"{api_base}{doc['href']}", params={"format": fmt})
					if derr:
						st.error(derr)
						continue
					st.download_button(
						f"Download {fmt.upper()}",
						data=content,
						file_name=f"{order_id}_{doc['kind']}.{fmt}",
						key=f"dl_{order_id}_{doc['kind']}_{fmt}",
					)

	st.markdown("#### Attachments")
	att_resp, err = request_json("GET", f"{api_base}/orders/{order_id}/attachments")
	for item in (att_resp or {}).get("attachments", []):
		cols = st.columns([4, 1])
		cols[0].write(f"{item['name']} · {item['size']:,} bytes")
		if cols[1].button("Remove", key=f"rm_{item['id']}"):
			_, rerr = request_json("DELETE", f"{api_base}/orders/{order_id}/attachments/{item['id']}")
			_finish_action(rerr)
	upload = st.file_uploader("Attach PDF or Word file", type=["pdf", "doc", "docx"], key=f"upload_{order_id}")
	if upload is not None and st.button("Upload", key=f"upload_btn_{order_id}"):
		_, uerr = request_json(
			"POST",
			f"{api_base}/orders/{order_id}/attachments",
			files={"file": (upload.name, upload.getvalue(), upload.type or "application/octet-stream")},
		)
		_finish_action(uerr)


with orders_tab:
	st.header("📋 Orders")
	metrics, err = request_json("GET", f"{api_base}/orders/metrics")
	if err:
		st.error(f"Backend unavailable: {err}")
	else:
		cols = st.columns(3)
		cols[0].metric("Open orders", metrics["open"])
		cols[1].metric("Needs approval", metrics["needs_approval"])
		cols[2].metric("Docs ready", metrics["docs_ready"])

	filter_cols = st.columns(3)
	search = filter_cols[0].text_input("Search patient or order ID")
	status = filter_cols[1].selectbox("Status", STATUSES)
	payer = filter_cols[2].selectbox("Payer", ["all", *PAYERS, "Self-Pay"])

	listing, err = request_json("GET", f"{api_base}/orders", params={"search": search, "status": status, "payer": payer})
	if err:
		st.error(err)
	else:
		rows = listing.get("orders", [])
		if rows:
			status_counts = pd.DataFrame(rows).groupby("status").size().reset_index(name="orders")
			chart = (
				alt.Chart(status_counts)
				.mark_bar()
				.encode(
					x=alt.X("orders:Q", title="Orders"),
					y=alt.Y("status:N", sort="-x", title="Status"),
					tooltip=[alt.Tooltip("status:N"), alt.Tooltip("orders:Q")],
				)
			)
			st.altair_chart(chart, use_container_width=True)
		st.dataframe(
			pd.DataFrame([
				{
					"Order": o["id"],
					"Patient": o["patient"],
					"Payer": o["payer"],
					"Status": o["status"],
					"Total allowed": format_currency(o["total_allowed"]),
					"Margin": f"{o['margin']:.1f}%",
					"Updated": o["updated"],
				}
				for o in rows
			]),
			use_container_width=True,
		)
		if rows:
			ids = [o["id"] for o in rows]
			current = st.session_state.get("selected_order_id")
			selected = st.selectbox("Open order", ids, index=ids.index(current) if current in ids else 0)
			st.session_state["selected_order_id"] = selected
			st.divider()
			render_order_detail(selected)
		else:
			st.caption("No orders match the current filters.")


with new_order_tab:
	st.header("📝 New Order")
	continue_id = st.session_state.get("continue_id")
	prefill_params = {"continue": continue_id} if continue_id else {}
	prefill, err = request_json("GET", f"{api_base}/orders/new/prefill", params=prefill_params)
	if err:
		st.error(err)
		prefill = {}
	if not continue_id:
		prefill = {**(prefill or {}).get("draft", {}), **{k: v for k, v in (prefill or {}).items() if k != "draft" and v}}
	if continue_id:
		st.info(f"Continuing {continue_id}")
		if st.button("Start a fresh order instead"):
			st.session_state["continue_id"] = None
			st.rerun()

	options = _product_options(all_products)
	prefill_lines = prefill.get("line_items") or []
	line_count = st.number_input(
		"Line items", min_value=1, max_value=10, value=max(len(prefill_lines), int(st.session_state["form_lines"])), step=1
	)
	st.session_state["form_lines"] = int(line_count)

	name_cols = st.columns(2)
	first_name = name_cols[0].text_input("First name", value=prefill.get("first_name", ""))
	last_name = name_cols[1].text_input("Last name", value=prefill.get("last_name", ""))
	info_cols = st.columns(2)
	dob = info_cols[0].text_input("Date of birth (YYYY-MM-DD)", value=prefill.get("dob") or "")
	phone = info_cols[1].text_input("Phone", value=prefill.get("phone", ""))
	address = st.text_input("Address", value=prefill.get("address", ""))
	addr_cols = st.columns(3)
	city = addr_cols[0].text_input("City", value=prefill.get("city", ""))
	state = addr_cols[1].text_input("State", value=prefill.get("state", ""))
	zip_code = addr_cols[2].text_input("ZIP", value=prefill.get("zip", ""))

	self_pay = st.checkbox("Self-pay", value=bool(prefill.get("self_pay")))
	payer_choice = None
	insurance_id = ""
	group_number = ""
	if not self_pay:
		ins_cols = st.columns(3)
		payer_default = prefill.get("payer") or ""
		payer_options = ["", *PAYERS]
		payer_choice = ins_cols[0].selectbox(
			"Payer", payer_options, index=payer_options.index(payer_default) if payer_default in payer_options else 0
		) or None
		insurance_id = ins_cols[1].text_input("Insurance ID", value=prefill.get("insurance_id") or "")
		group_number = ins_cols[2].text_input("Group number", value=prefill.get("group_number") or "")

	line_items: list[dict[str, Any]] = []
	product_ids = ["", *options.keys()]
	for idx in range(int(line_count)):
		existing = prefill_lines[idx] if idx < len(prefill_lines) else {}
		cols = st.columns([4, 1])
		chosen = cols[0].selectbox(
			f"Product {idx + 1}",
			product_ids,
			index=product_ids.index(existing.get("product_id", "")) if existing.get("product_id", "") in product_ids else 0,
			format_func=lambda pid: options.get(pid, "Select a product"),
			key=f"line_product_{idx}",
		)
		qty = cols[1].number_input("Qty", min_value=1, value=int(existing.get("qty") or 1), key=f"line_qty_{idx}")
		line_items.append({"product_id": chosen, "qty": int(qty)})

	form_payload = {
		"first_name": first_name,
		"last_name": last_name,
		"dob": dob or None,
		"phone": phone,
		"self_pay": self_pay,
		"payer": payer_choice,
		"insurance_id": insurance_id,
		"group_number": group_number,
		"address": address,
		"city": city,
		"state": state,
		"zip": zip_code,
		"line_items": line_items,
		"continue_id": continue_id,
	}

	priced = [li for li in line_items if li["product_id"]]
	if priced:
		quote, qerr = request_json(
			"POST", f"{api_base}/pricing/quote", json={"payer": payer_choice, "self_pay": self_pay, "line_items": priced}
		)
		if qerr:
			st.error(qerr)
		elif quote:
			st.table(
				[
					{
						"Item": li["product"],
						"HCPCS": li["hcpcs"],
						"Qty": li["qty"],
						"Allowed": format_currency(li["allowed_amount"]),
						"Patient share": format_currency(li["patient_share"]),
					}
					for li in quote["line_items"]
				]
			)
			qcols = st.columns(2)
			qcols[0].metric("Total allowed", format_currency(quote["total_allowed"]))
			qcols[1].metric("Margin", f"{quote['margin']:.1f}%")
			for warning in quote.get("warnings", []):
				wcols = st.columns([4, 1])
				wcols[0].warning(f"{warning['message']}. Remove the line or add the fee schedule.")
				if wcols[1].button("Add fee schedule", key=f"fs_{warning['line_item']}"):
					_, serr = request_json("PUT", f"{api_base}/orders/form-draft", json=form_payload)
					if serr:
						st.error(serr)
					else:
						st.session_state["fee_prefill"] = {"payer": warning["payer"], "hcpcs": warning["hcpcs"]}
						st.info("Form saved. Open the Fee Schedules tab to add the missing schedule.")

	submit_cols = st.columns(2)
	if submit_cols[0].button("Submit order", type="primary"):
		resp, serr = request_json("POST", f"{api_base}/orders", json=form_payload)
		if serr:
			st.error(serr)
		else:
			order = resp["order"]
			st.success(f"Order {order['id']} created with status '{order['status']}'")
			st.session_state["continue_id"] = None
			st.session_state["selected_order_id"] = order["id"]
	if submit_cols[1].button("Save draft"):
		resp, serr = request_json("POST", f"{api_base}/orders/draft", json=form_payload)
		if serr:
			st.error(serr)
		else:
			st.success(f"Draft {resp['order']['id']} saved")
			st.session_state["continue_id"] = resp["order"]["id"]


with products_tab:
	st.header("📦 Products")
	st.dataframe(
		[
			{
				"ID": p["id"],
				"Name": p["name"],
				"HCPCS": p["hcpcs"],
				"Vendor": p["vendor"],
				"Cost": format_currency(p["cost"]),
				"MSRP": format_currency(p["msrp"]),
				"Approval": "Yes" if p["requires_approval"] else "",
				"Measurement": "Yes" if p["requires_measurement"] else "",
			}
			for p in all_products
		],
		use_container_width=True,
	)
	with st.form(key="add_product_form", clear_on_submit=True):
		st.markdown("#### Add product")
		pcols = st.columns(3)
		p_name = pcols[0].text_input("Name")
		p_hcpcs = pcols[1].text_input("HCPCS code")
		p_vendor = pcols[2].text_input("Vendor")
		ncols = st.columns(2)
		p_cost = ncols[0].text_input("Cost")
		p_msrp = ncols[1].text_input("MSRP")
		p_approval = st.checkbox("Requires approval")
		p_measure = st.checkbox("Requires measurement")
		if st.form_submit_button("Add product"):
			resp, perr = request_json(
				"POST",
				f"{api_base}/products",
				json={
					"name": p_name,
					"hcpcs": p_hcpcs,
					"vendor": p_vendor,
					"cost": p_cost,
					"msrp": p_msrp,
					"requires_approval": p_approval,
					"requires_measurement": p_measure,
				},
			)
			if perr:
				st.error(perr)
			else:
				st.success(f"Added {resp['product']['id']}")
				st.rerun()


with fee_tab:
	st.header("💲 Fee Schedules")
	schedules, err = request_json("GET", f"{api_base}/fee-schedules")
	if err:
		st.error(err)
	else:
		st.dataframe(
			[
				{
					"ID": fs["id"],
					"Payer": fs["payer"],
					"HCPCS": fs["hcpcs"],
					"Allowed": format_currency(fs["allowed_amount"]),
					"Patient share %": fs["patient_share_percent"],
				}
				for fs in (schedules or {}).get("fee_schedules", [])
			],
			use_container_width=True,
		)

	hint = st.session_state.get("fee_prefill") or {}
	fs_prefill, _ = request_json("GET", f"{api_base}/fee-schedules/prefill", params=hint)
	fs_prefill = fs_prefill or {}
	with st.expander("Add fee schedule", expanded=bool(fs_prefill.get("open_dialog"))):
		with st.form(key="add_fee_schedule_form"):
			payer_options = ["", *PAYERS]
			fs_payer = st.selectbox(
				"Payer",
				payer_options,
				index=payer_options.index(fs_prefill.get("payer", "")) if fs_prefill.get("payer", "") in payer_options else 0,
			)
			product_ids = ["", *_product_options(all_products).keys()]
			fs_product = st.selectbox(
				"Product",
				product_ids,
				index=product_ids.index(fs_prefill.get("product_id", "")) if fs_prefill.get("product_id", "") in product_ids else 0,
				format_func=lambda pid: _product_options(all_products).get(pid, "Select a product"),
			)
			fs_allowed = st.text_input("Allowed amount")
			if fs_prefill.get("patient_share_percent") is not None:
				st.caption(f"Patient share defaults to {fs_prefill['patient_share_percent']}% for {fs_prefill['payer']}")
			if st.form_submit_button("Add fee schedule"):
				resp, ferr = request_json(
					"POST",
					f"{api_base}/fee-schedules",
					json={"payer": fs_payer, "product_id": fs_product, "allowed_amount": fs_allowed},
				)
				if ferr:
					st.error(ferr)
				else:
					st.success(f"Added {resp['fee_schedule']['id']}")
					st.session_state["fee_prefill"] = None
					st.rerun()
