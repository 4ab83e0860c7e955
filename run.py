from __future__ import annotations
import os
from beautybook import create_app
from beautybook.config import get_config

def main() -> None:
    flask_app = create_app(get_config(os.environ.get("APP_ENV")))

    if flask_app.debug:
        # guarded page routes first, then the JSON API
        rules = sorted(flask_app.url_map.iter_rules(), key=lambda r: (r.rule.startswith("/api/"), r.rule))
        flask_app.logger.info("Mounted routes:\n%s", "\n".join(f"  {r.rule} [{', '.join(sorted(r.methods - {'HEAD', 'OPTIONS'}))}]" for r in rules))

    port = int(os.environ.get("PORT", 5000))
    flask_app.run(host="0.0.0.0", port=port, debug=flask_app.debug or os.environ.get("FLASK_DEBUG") == "1")

if __name__ == "__main__":
    main()
