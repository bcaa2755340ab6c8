#!/usr/bin/env python3
"""
Smoke test for a deployed submission API
Posts a sample upload to /process and /preview and prints the results
"""

import io
import sys
import json

import requests
from PIL import Image


def create_test_image():
    """Create a simple test image"""
    img = Image.new('RGB', (640, 480), color='red')
    buffer = io.BytesIO()
    img.save(buffer, format='JPEG')
    return buffer.getvalue()


def test_api(api_base_url):
    """Exercise the submission endpoints"""
    print(f"Testing API at: {api_base_url}")
    print("=" * 50)

    image_data = create_test_image()
    fields = {
        'filename': 'smoke test.jpg',
        'models': json.dumps(['color_restore', 'superres']),
        'email': 'smoke@example.com',
        'consent_gallery': '1',
        'consent_training': '0',
        'wm': '1'
    }

    print("\n1. Testing Submission...")
    try:
        response = requests.post(
            f"{api_base_url}/process",
            data=fields,
            files={'file': ('smoke.jpg', image_data, 'image/jpeg')},
            timeout=60
        )
        print(f"Status: {response.status_code}")
        if response.status_code == 200:
            result = response.json()
            print("✅ Submission successful!")
            print(f"Output: {result.get('url')} ({result.get('bytes')} bytes)")
            if 'original' in result:
                print(f"Original: {result['original'].get('url')}")
        else:
            print(f"❌ Submission failed: {response.text}")
    except requests.RequestException as e:
        print(f"❌ Submission error: {str(e)}")

    print("\n2. Testing Preview...")
    try:
        response = requests.post(
            f"{api_base_url}/preview",
            data={'models': json.dumps(['dehaze'])},
            files={'file': ('smoke.jpg', image_data, 'image/jpeg')},
            timeout=60
        )
        print(f"Status: {response.status_code}")
        if response.status_code == 200 and response.headers.get('Content-Type') == 'image/jpeg':
            print(f"✅ Preview successful! {len(response.content)} bytes")
        else:
            print(f"❌ Preview failed: {response.text[:200]}")
    except requests.RequestException as e:
        print(f"❌ Preview error: {str(e)}")

    print("\n3. Testing Schema Inspection...")
    try:
        response = requests.get(f"{api_base_url}/notion-schema", timeout=30)
        print(f"Status: {response.status_code}")
        if response.status_code == 200:
            props = response.json().get('submissions', {})
            print(f"✅ Found {len(props)} properties: {', '.join(sorted(props))}")
        else:
            print(f"❌ Schema lookup failed: {response.text}")
    except requests.RequestException as e:
        print(f"❌ Schema lookup error: {str(e)}")

    print("\n4. Testing Oversized Upload...")
    try:
        response = requests.post(
            f"{api_base_url}/process",
            files={'file': ('huge.jpg', b'\xff' * (70 * 1024 * 1024), 'image/jpeg')},
            timeout=120
        )
        if response.status_code == 413:
            print(f"✅ Rejected as expected: {response.json()}")
        else:
            print(f"❌ Unexpected status {response.status_code}: {response.text[:200]}")
    except requests.RequestException as e:
        print(f"❌ Oversized upload error: {str(e)}")

    print("\n" + "=" * 50)
    print("API Testing Complete!")


def main():
    """Main function"""
    if len(sys.argv) != 2:
        print("Usage: python scripts/smoke_test_api.py <API_BASE_URL>")
        print("Example: python scripts/smoke_test_api.py http://localhost:4566/restapis/abc123/dev/_user_request_")
        sys.exit(1)

    test_api(sys.argv[1].rstrip('/'))


if __name__ == "__main__":
    main()
