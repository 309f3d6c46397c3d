# app.py
import os
import uuid
import streamlit as st
import requests
from dotenv import load_dotenv

from balances import describe_balance

load_dotenv()
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")

st.set_page_config(page_title="Trip Ledger", page_icon="🧳", layout="wide")

st.title("🧳 Trip Ledger")
st.sidebar.header("Navigation")

page = st.sidebar.radio("Go to", ["Create User", "Profile", "Create Trip", "Join Trip", "Add Expense", "Balances"])


def show_error(res):
    try:
        error_detail = res.json().get("detail", "Unknown error")
    except ValueError:  # JSONDecodeError
        error_detail = res.text or "No response body or invalid JSON"
    st.error(f"❌ Error: {error_detail}")


def device_user_id():
    """The user registered from this browser session, if any."""
    device_id = st.session_state.get("device_id")
    if not device_id:
        return None
    res = requests.get(f"{BASE_URL}/users/by-device/{device_id}")
    return res.json()["id"] if res.status_code == 200 else None


def pick_user(label="You are", container=st):
    users_res = requests.get(f"{BASE_URL}/users/")
    if users_res.status_code != 200:
        container.error("Failed to fetch users from backend.")
        return None
    users = users_res.json()
    if not users:
        container.info("Create a user first.")
        return None
    ids = [user['id'] for user in users]
    names = {user['id']: user['display_name'] for user in users}
    current = device_user_id()
    index = ids.index(current) if current in ids else 0
    return container.selectbox(label, options=ids, index=index, format_func=lambda user_id: names[user_id])


def pick_trip():
    user_id = pick_user(container=st.sidebar)
    if not user_id:
        return None
    trips_res = requests.get(f"{BASE_URL}/users/{user_id}/trips")
    if trips_res.status_code != 200:
        show_error(trips_res)
        return None
    trips = {trip['id']: trip for trip in trips_res.json()}
    if not trips:
        st.sidebar.info("Create or join a trip first.")
        return None
    ids = list(trips.keys())
    saved = st.session_state.get("trip_id")
    trip_id = st.sidebar.selectbox(
        "Trip",
        options=ids,
        index=ids.index(saved) if saved in ids else 0,
        format_func=lambda tid: f"{trips[tid]['name']} ({trips[tid]['member_count']} members)",
    )
    st.session_state["trip_id"] = trip_id
    return trip_id


# --- CREATE USER ---
if page == "Create User":
    st.header("👤 Create a New User")
    display_name = st.text_input("Display Name")

    if st.button("Create User"):
        device_id = f"device_{uuid.uuid4().hex}"
        res = requests.post(f"{BASE_URL}/users/", json={"display_name": display_name, "device_id": device_id})
        if res.status_code == 201:
            st.session_state["device_id"] = device_id
            st.success("✅ User created successfully!")
        else:
            show_error(res)

# --- PROFILE ---
elif page == "Profile":
    st.header("🪪 Profile")
    user_id = pick_user()
    new_name = st.text_input("New Display Name")

    if user_id and st.button("Save"):
        res = requests.patch(f"{BASE_URL}/users/{user_id}", json={"display_name": new_name})
        if res.status_code == 200:
            st.success(f"✅ You are now {res.json()['display_name']}")
        else:
            show_error(res)

# --- CREATE TRIP ---
elif page == "Create Trip":
    st.header("🗺️ Create a New Trip")
    user_id = pick_user()
    trip_name = st.text_input("Trip Name")

    if user_id and st.button("Create Trip"):
        res = requests.post(f"{BASE_URL}/trips/", json={"name": trip_name, "created_by": user_id})
        if res.status_code == 201:
            trip = res.json()
            st.session_state["trip_id"] = trip["id"]
            st.success(f"✅ Trip created! Share the join code **{trip['join_code']}**")
        else:
            show_error(res)

# --- JOIN TRIP ---
elif page == "Join Trip":
    st.header("🤝 Join a Trip")
    user_id = pick_user()
    code = st.text_input("Join Code")

    if user_id and st.button("Join"):
        res = requests.post(f"{BASE_URL}/trips/join", json={"code": code, "user_id": user_id})
        if res.status_code == 200:
            trip = res.json()
            st.session_state["trip_id"] = trip["id"]
            st.success(f"✅ Joined {trip['name']}!")
        else:
            show_error(res)

# --- ADD EXPENSE ---
elif page == "Add Expense":
    st.header("💰 Add a New Expense")
    trip_id = pick_trip()

    if trip_id:
        members_res = requests.get(f"{BASE_URL}/trips/{trip_id}/members")
        if members_res.status_code == 200:
            user_options = {m['display_name']: m['id'] for m in members_res.json()}

            description = st.text_input("Description")
            amount = st.number_input("Total Amount", min_value=0.0, step=0.01)
            paid_by_name = st.selectbox("Paid By", options=list(user_options.keys()))
            selected_names = st.multiselect(
                "Split among",
                options=list(user_options.keys()),
                default=list(user_options.keys())
            )

            if selected_names and amount:
                st.caption(f"Each person pays {amount / len(selected_names):.2f}")

            if st.button("Add Expense", disabled=not description.strip() or not amount or not selected_names):
                payload = {
                    "description": description,
                    "amount": amount,
                    "paid_by": user_options[paid_by_name],
                    "split_among": [user_options[name] for name in selected_names]
                }
                res = requests.post(f"{BASE_URL}/trips/{trip_id}/expenses", json=payload)
                if res.status_code == 201:
                    st.success("✅ Expense added successfully!")
                else:
                    show_error(res)
        else:
            show_error(members_res)

# --- BALANCES ---
elif page == "Balances":
    st.header("📊 Balances")
    trip_id = pick_trip()

    if trip_id:
        trip_res = requests.get(f"{BASE_URL}/trips/{trip_id}")
        members = trip_res.json()["members"] if trip_res.status_code == 200 else []
        names = {m["id"]: m["display_name"] for m in members}

        balances_res = requests.get(f"{BASE_URL}/trips/{trip_id}/balances")
        if balances_res.status_code == 200:
            for balance in balances_res.json():
                st.write(f"**{balance['user_name']}** {describe_balance(balance['balance'])}")
        else:
            show_error(balances_res)

        st.divider()
        st.subheader("Expense History")
        expenses_res = requests.get(f"{BASE_URL}/trips/{trip_id}/expenses")
        if expenses_res.status_code == 200:
            for exp in expenses_res.json():
                payer = (exp.get('paid_by_user') or {}).get('display_name', exp['paid_by'])
                with st.expander(f"🧾 {exp['description']} — {exp['amount']:.2f} {exp['currency']} (paid by {payer})"):
                    for split in exp['splits']:
                        col1, col2 = st.columns([3, 1])
                        col1.write(f"{names.get(split['user_id'], split['user_id'])}: {split['amount']:.2f}")
                        if split['is_settled']:
                            col2.write("✅ settled")
                        elif col2.button("Settle", key=split['id']):
                            res = requests.post(f"{BASE_URL}/trips/{trip_id}/splits/{split['id']}/settle")
                            if res.status_code == 200:
                                st.rerun()
                            else:
                                show_error(res)
                    if st.button("Delete expense", key=f"delete-{exp['id']}"):
                        res = requests.delete(f"{BASE_URL}/trips/{trip_id}/expenses/{exp['id']}")
                        if res.status_code == 200:
                            st.rerun()
                        else:
                            show_error(res)
        else:
            show_error(expenses_res)
