#!/usr/bin/env python3
"""
Simple script to read the current tally from a vMix switcher.

Queries either the /api/ XML status document or the per-camera
/tallyupdate/ endpoint and prints program/preview/off for each camera.
"""

import argparse
import sys

import urllib3

from vmix_client import TallyError, TallyState, VmixTally, build_base_url

LABELS = {
    TallyState.PROGRAM: "ON AIR",
    TallyState.PREVIEW: "PREVIEW",
    TallyState.OFF: "off",
}


def main():
    """Main entry point for CLI usage."""
    parser = argparse.ArgumentParser(
        description='Read vMix tally state',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s 192.168.1.20
  %(prog)s 192.168.1.20 --camera 3
  %(prog)s abcd1234.ngrok-free.app --tunnel
  %(prog)s 192.168.1.20 --keys 1=cam1key,2=cam2key
        '''
    )

    parser.add_argument('host', help='Switcher IP address or hostname')
    parser.add_argument('-p', '--port', type=int, default=None,
                        help='vMix web controller port (default: 8088, none with --tunnel)')
    parser.add_argument('--tunnel', action='store_true',
                        help='Switcher is reached through an ngrok tunnel (https, bypass header)')
    parser.add_argument('-k', '--keys', type=str, metavar='CAM=KEY,...',
                        help='Use per-camera tally keys instead of the /api/ document')
    parser.add_argument('-c', '--camera', type=int, metavar='N',
                        help='Only print this camera')
    parser.add_argument('-n', '--count', type=int, default=8,
                        help='Cameras to list without --keys (default: 8)')
    parser.add_argument('-t', '--timeout', type=float, default=5.0,
                        help='Request timeout in seconds (default: 5)')

    args = parser.parse_args()

    keys = {}
    if args.keys:
        for entry in args.keys.split(','):
            camera, _, key = entry.partition('=')
            try:
                keys[int(camera)] = key
            except ValueError:
                parser.error(f'invalid --keys entry: {entry!r}')

    # Disable SSL warnings
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    port = args.port
    if port is None and not args.tunnel:
        port = 8088
    base_url = build_base_url(args.host, port, 'https' if args.tunnel else 'http')

    client = VmixTally(
        base_url,
        mode='keyed' if keys else 'bulk',
        keys=keys,
        timeout=args.timeout,
        tunnel=args.tunnel,
    )

    try:
        if args.camera is not None:
            state = client.get_camera_state(args.camera)
            print(f"Camera {args.camera}: {LABELS[state]}")
            return 0

        snapshot = client.fetch_snapshot()
    except TallyError as e:
        print(f"Error reading tally from {base_url}: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()

    cameras = sorted(keys) if keys else range(1, args.count + 1)
    for camera in cameras:
        print(f"Camera {camera}: {LABELS[snapshot.state_of(camera)]}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
