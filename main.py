import getpass
import mimetypes
import sys
from pathlib import Path

import requests

import config
from wallet_auth import Action, sign_request_headers

TIMEOUT = 60

# ---------- basic io ----------
def input_safe(prompt: str) -> str:
    return input(prompt)

def input_password(prompt: str) -> str:
    return getpass.getpass(prompt)

def fetch_bytes_from_link(link: str) -> bytes:
    p = Path(link)
    if p.exists() and p.is_file():
        return p.read_bytes()
    if link.lower().startswith("http://") or link.lower().startswith("https://"):
        resp = requests.get(link, timeout=30)
        resp.raise_for_status()
        return resp.content
    raise FileNotFoundError(f"Not a file or URL: {link}")

def mime_from_link(link: str) -> str:
    mt, _ = mimetypes.guess_type(link)
    return mt or "application/octet-stream"

def show_error(resp: requests.Response):
    try:
        body = resp.json()
    except ValueError:
        print(f"Request failed: HTTP {resp.status_code}")
        return
    print(f"{body.get('error', 'Request failed')} (HTTP {resp.status_code}): {body.get('message', '')}")
    if body.get("reason"):
        print(f"Reason: {body['reason']}")

# ---------- requests ----------
def upload_record(base_url: str, private_key: str):
    link = input_safe("File path or URL: ").strip()
    try:
        blob = fetch_bytes_from_link(link)
    except (OSError, requests.RequestException) as e:
        print(f"Error: {e}")
        return
    patient = input_safe("Patient wallet address: ").strip()
    headers = sign_request_headers(private_key, Action.UPLOAD)
    resp = requests.post(
        f"{base_url}/api/upload/medical-record",
        headers=headers,
        files={"file": (Path(link).name or "record", blob, mime_from_link(link))},
        data={"patientAddress": patient},
        timeout=TIMEOUT,
    )
    if not resp.ok:
        show_error(resp)
        return
    out = resp.json()
    print("\nUploaded (encrypted).")
    print(f"Storage address: {out['storageAddress']}")
    print(f"Decryption key:  {out['key']}")
    print("The server keeps no copy of this key. Store it safely; it cannot be recovered.")

def retrieve_record(base_url: str, private_key: str):
    storage_address = input_safe("Storage address: ").strip()
    key = input_password("Decryption key (hex): ").strip()
    patient = input_safe("Patient wallet address: ").strip()
    headers = sign_request_headers(private_key, Action.RETRIEVE)
    resp = requests.post(
        f"{base_url}/api/upload/retrieve",
        headers=headers,
        json={"storageAddress": storage_address, "key": key, "patientAddress": patient},
        timeout=TIMEOUT,
    )
    if not resp.ok:
        show_error(resp)
        return
    default_name = "medical-record.pdf" if resp.headers.get("content-type", "").startswith("application/pdf") else "medical-record.bin"
    out_path = Path(input_safe(f"Save as [{default_name}]: ").strip() or default_name)
    out_path.write_bytes(resp.content)
    print(f"Saved {len(resp.content)} bytes to {out_path.resolve()}")

def check_status(base_url: str):
    try:
        resp = requests.get(f"{base_url}/api/upload/status", timeout=10)
        resp.raise_for_status()
    except requests.RequestException as e:
        print(f"Backend unreachable: {e}")
        return
    body = resp.json()
    print(f"backend: {body['backend']}  store: {body['store']}  ({body['message']})")

# ---------- main ----------
def main():
    base_url = config.API_BASE_URL.rstrip("/")
    print("=== Medical Record Exchange client (wallet-signed requests) ===")
    print(f"Backend: {base_url}")
    private_key = input_password("Wallet private key (hex, not echoed): ").strip()
    while True:
        print("\n1) Upload a record for a patient")
        print("2) Retrieve a record")
        print("3) Check backend status")
        print("4) Exit")
        cmd = input_safe("Choose: ").strip()

        try:
            if cmd == "1":
                upload_record(base_url, private_key)
            elif cmd == "2":
                retrieve_record(base_url, private_key)
            elif cmd == "3":
                check_status(base_url)
            elif cmd == "4":
                print("Goodbye."); sys.exit(0)
            else:
                print("Invalid choice.")
        except ValueError as e:
            print(f"Invalid input: {e}")
        except requests.RequestException as e:
            print(f"Request failed: {e}")

if __name__ == "__main__":
    main()
