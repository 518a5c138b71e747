#!/usr/bin/env python3
"""
Verify the inference service is running its engines on the GPU.

Run this script to check:
1. Service health
2. GPU availability as seen by the service
3. Which backend each engine ended up on (and whether it fell back to CPU)

Optionally pass --warmup to trigger a text comparison first, so the
embedding engine is initialized before the report.

Usage:
    python verify_gpu.py http://localhost:8080
    python verify_gpu.py http://localhost:8080 --warmup
"""
import argparse
import sys

import requests

API_PREFIX = "/api/inference"


def check_gpu_info(base_url: str, warmup: bool = False) -> bool:
    """Print the service's GPU report. Returns True if the engines run on GPU."""
    print("=" * 60)
    print("GPU Verification Report")
    print("=" * 60)

    try:
        response = requests.get(f"{base_url}{API_PREFIX}/health", timeout=5)
        response.raise_for_status()
        print(f"\n✓ Service is UP at {base_url}")
    except requests.exceptions.RequestException as e:
        print(f"\n✗ Service is DOWN: {e}")
        return False

    if warmup:
        print("\nWarming up embedding engine...")
        try:
            response = requests.post(
                f"{base_url}{API_PREFIX}/embeddings",
                json={"text1": "cat", "text2": "cat"},
                timeout=300,
            )
            print(f"  Status: {response.status_code}")
        except requests.exceptions.RequestException as e:
            print(f"  ✗ Warmup request failed: {e}")

    try:
        metrics = requests.get(f"{base_url}{API_PREFIX}/metrics", timeout=5).json()
    except requests.exceptions.RequestException as e:
        print(f"\n✗ Failed to get metrics: {e}")
        return False

    print("\n" + "=" * 60)
    print("GPU Configuration:")
    print("=" * 60)
    print(f"GPU Available:   {metrics.get('gpuAvailable')}")
    print(f"Models Loaded:   {metrics.get('modelsLoaded')}")
    print(f"ONNX Runtime:    {metrics.get('runtimeVersion')}")
    print(f"PyTorch:         {metrics.get('torchVersion')}")

    all_on_gpu = True
    loaded_any = False
    for name, info in metrics.get("models", {}).items():
        print(f"\n[{name}] {info.get('model')}")
        print(f"  Status:   {info.get('status')}")
        print(f"  Backend:  {info.get('backend') or 'not initialized'}")
        if info.get("fellBackToCpu"):
            print(f"  ⚠️  Fell back to CPU: {info.get('fallbackReason')}")
        if info.get("reason"):
            print(f"  Reason:   {info.get('reason')}")
        if info.get("backend"):
            loaded_any = True
            all_on_gpu = all_on_gpu and info.get("backend") == "GPU"

    print("=" * 60)

    if not metrics.get("gpuAvailable"):
        print("\n❌ GPU NOT AVAILABLE")
        print("   Reasons:")
        print("   - Docker container not started with --gpus flag")
        print("   - NVIDIA drivers not installed on host")
        print("   - onnxruntime-gpu not installed / CUDA or cuDNN version mismatch")
        return False

    if not loaded_any:
        print("\n⚠️  No engine initialized yet; GPU use is only confirmed after the first request")
        return False

    return all_on_gpu


def main():
    parser = argparse.ArgumentParser(description="Verify GPU use of the inference service")
    parser.add_argument("url", help="Service base URL, e.g. http://localhost:8080")
    parser.add_argument("--warmup", action="store_true", help="Initialize the embedding engine first")
    args = parser.parse_args()

    success = check_gpu_info(args.url.rstrip("/"), warmup=args.warmup)

    if success:
        print("\n✅ GPU verification PASSED")
        sys.exit(0)
    else:
        print("\n❌ GPU verification FAILED")
        print("\nNext steps:")
        print("1. Verify the container is started with --gpus all")
        print("2. Check NVIDIA drivers: nvidia-smi")
        print("3. Review service logs for CUDA provider errors")
        sys.exit(1)


if __name__ == "__main__":
    main()
