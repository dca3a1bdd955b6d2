# Client-side key custody and encryption
