"""Staff console for Irutomo - HTTP client for the admin API."""

import getpass
import logging
import shlex
import sys

import httpx

from irutomo.config import get_config, setup_logging

logger = logging.getLogger(__name__)

HELP = """Commands:
  list [status] [date]       List reservations (status: pending/confirmed/cancelled/completed)
  show <id>                  Show one reservation
  confirm <id>               Confirm a reservation
  cancel <id> <reason...>    Cancel a reservation and e-mail the customer
  help                       Show this help
  quit                       Exit"""


class AdminCLI:
    """Command-line console for staff working the reservation queue."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        """Initialize the CLI.

        Args:
            client: HTTP client bound to the server (created from config if omitted)
        """
        self.config = get_config()
        self.client = client or httpx.Client(base_url=self.config.server_url, timeout=30.0)
        self.token: str | None = None

    def login(self, username: str, password: str) -> bool:
        """Log in and keep the bearer token for later commands."""
        response = self.client.post(
            "/admin/login", data={"username": username, "password": password}
        )
        if response.status_code != 200:
            print("\n⚠ Login failed: incorrect username or password")
            return False
        self.token = response.json()["access_token"]
        logger.info(f"Logged in as {username}")
        return True

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def run(self) -> None:
        """Run the interactive console."""
        print("\n" + "=" * 60)
        print("IRUTOMO - Reservation staff console")
        print(f"Server: {self.config.server_url}")
        print("=" * 60 + "\n")

        username = input("Username: ").strip() or self.config.admin_username
        if not self.login(username, getpass.getpass("Password: ")):
            return

        print(HELP)
        while True:
            try:
                line = input("\nadmin> ").strip()
                if not line:
                    continue
                if not self.handle_command(line):
                    print("\nGoodbye!")
                    break
            except KeyboardInterrupt:
                print("\n\nExiting. Goodbye!")
                break
            except httpx.ConnectError:
                logger.exception("Cannot connect to server")
                print(f"\n⚠ Cannot connect to server at {self.config.server_url}")
                print("Make sure the server is running:")
                print("  python -m irutomo.server")
            except httpx.HTTPError as e:
                logger.error(f"Request failed: {e}", exc_info=True)
                print(f"\n⚠ Request failed: {e}")

    def handle_command(self, line: str) -> bool:
        """Execute one console command.

        Returns:
            False when the console should exit
        """
        parts = shlex.split(line)
        command, args = parts[0].lower(), parts[1:]

        if command in ("quit", "exit", "q"):
            return False
        if command == "help":
            print(HELP)
        elif command == "list":
            self._list(args)
        elif command == "show" and len(args) == 1:
            self._show(args[0])
        elif command == "confirm" and len(args) == 1:
            self._set_status(args[0], "confirmed")
        elif command == "cancel" and len(args) >= 2:
            self._set_status(args[0], "cancelled", " ".join(args[1:]))
        else:
            print(f"Unknown command: {line}\n{HELP}")
        return True

    def _print_error(self, response: httpx.Response) -> None:
        is_json = response.headers.get("content-type", "").startswith("application/json")
        data = response.json() if is_json else {}
        detail = data.get("message") or data.get("detail") or response.text
        print(f"\n⚠ Server error (status {response.status_code}): {detail}")

    def _list(self, args: list[str]) -> None:
        params = {}
        for arg in args:
            if arg[:1].isdigit():
                params["date"] = arg
            else:
                params["status"] = arg
        response = self.client.get(
            "/admin/reservations", params=params, headers=self._headers()
        )
        if response.status_code != 200:
            self._print_error(response)
            return

        reservations = response.json()["reservations"]
        if not reservations:
            print("No reservations found.")
            return
        for r in reservations:
            print(
                f"{r['id']}  {r['reservation_date']} {r['reservation_time']}  "
                f"{r['party_size']:>2}p  {r['status']:<10} {r['payment_status']:<15} {r['name']}"
            )

    def _show(self, reservation_id: str) -> None:
        response = self.client.get(f"/reservations/{reservation_id}")
        if response.status_code != 200:
            self._print_error(response)
            return
        for key, value in response.json().items():
            print(f"  {key:<20} {value}")

    def _set_status(self, reservation_id: str, status: str, reason: str | None = None) -> None:
        response = self.client.post(
            f"/admin/reservations/{reservation_id}/status",
            json={"status": status, "reason": reason},
            headers=self._headers(),
        )
        if response.status_code != 200:
            self._print_error(response)
            return
        print(f"\n✓ Reservation {reservation_id} is now {status}")


def main() -> None:
    """Main entry point for the staff console."""
    try:
        cfg = get_config()
    except Exception as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(cfg)
    AdminCLI().run()


if __name__ == "__main__":
    main()
