import streamlit as st
import requests
import os
import json

API_BASE = os.getenv("FILEDROP_API", f"http://{os.getenv('API_HOST','127.0.0.1')}:{os.getenv('PORT', os.getenv('API_PORT','3000'))}")

st.set_page_config(page_title="filedrop console", layout="wide")
st.title("📁 filedrop console")

st.sidebar.header("Server")
st.sidebar.write(f"API: {API_BASE}")
try:
    info = requests.get(f"{API_BASE}/", timeout=5).json()
    st.sidebar.success(f"{info.get('status')} v{info.get('version')}")
    st.sidebar.metric("Open SSE channels", info.get("connections", 0))
except Exception as e:
    st.sidebar.error(f"Server unreachable: {e}")

# ---------------- Upload ----------------
st.header("1) Upload files")
uploaded = st.file_uploader("Choose one or more files", accept_multiple_files=True)
instructions = st.text_area("Processing instructions (optional)", height=100)
metadata_text = st.text_input("Metadata JSON (optional)", value="")
if st.button("Upload", type="primary") and uploaded:
    files = [("files", (u.name, u.getvalue(), u.type or "application/octet-stream")) for u in uploaded]
    data = {}
    if instructions:
        data["instructions"] = instructions
    if metadata_text.strip():
        data["metadata"] = metadata_text
    try:
        r = requests.post(f"{API_BASE}/upload", files=files, data=data, timeout=120)
        if r.status_code == 200:
            body = r.json()
            st.success(body["message"])
            st.table([{k: f[k] for k in ("originalName", "storedName", "size", "mediaType")} for f in body["files"]])
        else:
            st.error(f"Upload failed: {r.text}")
    except Exception as e:
        st.error(f"Error: {e}")

# ---------------- Stored files ----------------
st.divider()
st.header("2) Stored files")
try:
    lr = requests.get(f"{API_BASE}/files", timeout=30)
    if lr.status_code == 200:
        listing = lr.json()
        if listing.get("count"):
            st.table([{k: f[k] for k in ("name", "sizeFormatted", "modified")} for f in listing["files"]])
            target = st.selectbox("File to delete", [f["name"] for f in listing["files"]])
            if st.button("Delete"):
                dr = requests.delete(f"{API_BASE}/files/{target}", timeout=30)
                if dr.status_code == 200:
                    st.success(dr.json()["message"])
                    st.rerun()
                else:
                    st.error(dr.json().get("error", dr.text))
        else:
            st.info("No files uploaded yet.")
    else:
        st.error(lr.text)
except Exception as e:
    st.error(f"Error: {e}")

# ---------------- Tool call ----------------
st.divider()
st.header("3) Try a tool call")
tool = st.selectbox("Tool", ["list_files", "delete_file", "upload_file"])
args_text = st.text_input("Arguments (JSON)", value="{}")
if st.button("Call"):
    try:
        payload = {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": tool, "arguments": json.loads(args_text or "{}")}}
        r = requests.post(f"{API_BASE}/mcp", json=payload, timeout=30)
        st.code(json.dumps(r.json(), indent=2), language="json")
    except Exception as e:
        st.error(f"Invalid JSON or network error: {e}")
