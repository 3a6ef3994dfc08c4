"""Run the helm-proxy command line tool."""

from helm_proxy.tool.helm_proxy import main

if __name__ == "__main__":
    main()
