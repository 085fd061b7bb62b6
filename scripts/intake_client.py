#!/usr/bin/env python3
"""
File Intake Client

Command-line helper for the File Intake Service API.
Use it to:
1. Login and save a JWT token
2. Upload files
3. List uploaded files and search the audit log (admin)
4. Download a stored file (admin)

Usage:
    python intake_client.py login <username> <password>
    python intake_client.py upload <path>
    python intake_client.py list [filename] [username]
    python intake_client.py search [filename] [username] [start_date] [end_date]
    python intake_client.py download <username> <stored_filename> [output]
"""

import os
import sys

import requests

API_BASE = os.environ.get("INTAKE_API_BASE", "http://localhost:8000")
TOKEN_FILE = os.environ.get("INTAKE_TOKEN_FILE", "intake_token.txt")


def make_request(method: str, url: str, **kwargs) -> requests.Response:
    """Make HTTP request with the saved token, if any."""
    kwargs.setdefault('timeout', 30)
    token = load_token()
    if token:
        headers = kwargs.setdefault('headers', {})
        headers.setdefault("Authorization", f"Bearer {token}")

    return requests.request(method, url, **kwargs)


def load_token() -> str:
    try:
        with open(TOKEN_FILE, "r") as f:
            return f.read().strip()
    except FileNotFoundError:
        return None


def login(username: str = None, password: str = None) -> dict:
    """
    Login and save the JWT token.

    Returns:
        dict with access_token, token_type, expires_in
    """
    if not username:
        username = input("Username: ")
    if not password:
        password = input("Password: ")

    print(f"\n🔐 Logging in as '{username}'...")

    resp = requests.post(
        f"{API_BASE}/v1/auth/login",
        json={"username": username, "password": password},
        timeout=10
    )

    if resp.status_code != 200:
        print(f"❌ Login failed: {resp.status_code}")
        print(f"   {resp.text}")
        return None

    data = resp.json()
    with open(TOKEN_FILE, "w") as f:
        f.write(data['access_token'])

    print(f"✅ Login successful (expires in {data['expires_in']} seconds)")
    print(f"📄 Token saved to {TOKEN_FILE}")
    return data


def upload(path: str, content_type: str = None):
    """Upload one file."""
    if not os.path.isfile(path):
        print(f"❌ No such file: {path}")
        return

    filename = os.path.basename(path)
    print(f"\n📤 Uploading {filename}...")

    with open(path, "rb") as f:
        files = {"file": (filename, f, content_type) if content_type else (filename, f)}
        resp = make_request('POST', f"{API_BASE}/v1/files", files=files)

    data = resp.json()
    if resp.status_code == 200:
        print(f"✅ {data['message']}")
        print(f"   Stored as: {data['stored_as']}")
    else:
        print(f"❌ Upload failed: {resp.status_code}")
        print(f"   {data.get('message') or data.get('detail')}")


def list_files(filename: str = None, username: str = None, page: int = 0):
    """List uploaded files (admin)."""
    params = {"page": page}
    if filename:
        params["filename"] = filename
    if username:
        params["username"] = username

    resp = make_request('GET', f"{API_BASE}/v1/files", params=params)

    if resp.status_code != 200:
        print(f"❌ Failed: {resp.status_code}")
        print(f"   {resp.text}")
        return

    data = resp.json()
    print(f"\n📁 Files (page {data['current_page'] + 1} of {max(data['total_pages'], 1)}, "
          f"{data['total_results']} total):")
    for f in data['files']:
        print(f"   {f['timestamp']}  {f['principal']:<16} {f['subject_name']}  ->  {f['storage_key']}")


def search(filename: str = None, username: str = None, start_date: str = None, end_date: str = None):
    """Search the audit log (admin)."""
    params = {}
    for key, value in (("filename", filename), ("username", username),
                       ("start_date", start_date), ("end_date", end_date)):
        if value:
            params[key] = value

    resp = make_request('GET', f"{API_BASE}/v1/admin/audit", params=params)

    if resp.status_code != 200:
        print(f"❌ Failed: {resp.status_code}")
        print(f"   {resp.text}")
        return

    data = resp.json()
    print(f"\n🔎 {data['total']} matching events:")
    for e in data['events']:
        print(f"   {e['timestamp']}  {e['event_type']:<8} owner={e['principal']} "
              f"actor={e['actor']} file={e['subject_name']}")


def download(username: str, stored_filename: str, output: str = None):
    """Download a stored file (admin)."""
    resp = make_request(
        'GET',
        f"{API_BASE}/v1/files/{username}/{stored_filename}",
        stream=True
    )

    if resp.status_code != 200:
        print(f"❌ Download failed: {resp.status_code}")
        print(f"   {resp.text}")
        return

    target = output or stored_filename
    with open(target, "wb") as f:
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            f.write(chunk)

    print(f"✅ Saved to {target}")


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        return

    cmd = sys.argv[1].lower()
    args = sys.argv[2:]

    if cmd == "login":
        login(*args[:2])

    elif cmd == "upload":
        if not args:
            print("Usage: intake_client.py upload <path> [content_type]")
            return
        upload(*args[:2])

    elif cmd == "list":
        list_files(*args[:2])

    elif cmd == "search":
        search(*args[:4])

    elif cmd == "download":
        if len(args) < 2:
            print("Usage: intake_client.py download <username> <stored_filename> [output]")
            return
        download(*args[:3])

    else:
        print(f"Unknown command: {cmd}")


if __name__ == "__main__":
    main()
